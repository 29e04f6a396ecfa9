"""Cron-friendly entrypoint that ingests a rolling window of dates for one city."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from datetime import date

from app.config import settings
from app.models.event import CITY_MAX_LENGTH
from app.services.events.errors import EventServiceError
from app.services.events.service import EventService, SyncReport, get_event_service, local_today, rolling_window
from app.services.ingestion.orchestrator import IngestionStatus

logger = logging.getLogger("pipelines.daily_sync")


def _city(value: str) -> str:
    city = value.strip()
    if not city or len(city) > CITY_MAX_LENGTH:
        raise argparse.ArgumentTypeError(f"city must be 1-{CITY_MAX_LENGTH} characters")
    return city


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch, verify and store upcoming events for a city.")
    parser.add_argument(
        "--city",
        type=_city,
        default=None,
        help="City to ingest (defaults to CRON_CITY).",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=settings.sync_window_days,
        help="Number of consecutive dates to query, starting at --start (default: 30).",
    )
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="First date of the window (YYYY-MM-DD); defaults to today in --timezone.",
    )
    parser.add_argument(
        "--timezone",
        type=str,
        default=settings.sync_timezone,
        help="Timezone used to resolve today (default: Asia/Shanghai).",
    )
    return parser.parse_args(argv)


def run(argv: Sequence[str] | None = None, *, service: EventService | None = None) -> SyncReport:
    """Execute one daily sync and return its report."""
    args = parse_args(argv)
    if args.days < 1:
        raise ValueError("--days must be >= 1")
    city = args.city or settings.cron_city
    start = args.start or local_today(args.timezone)
    window = rolling_window(start, args.days)
    service = service or get_event_service()

    logger.info("Daily sync starting city=%s window=%s..%s", city, window[0], window[-1])
    started = time.perf_counter()
    report = service.sync_city(city, window)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "Daily sync finished city=%s status=%s fetched=%s verified=%s inserted=%s updated=%s duration=%.0fms",
        city,
        report.status.value,
        report.fetched,
        report.verified,
        report.inserted,
        report.updated,
        elapsed_ms,
    )
    return report


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint; returns a process exit code."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        report = run(argv if argv is not None else sys.argv[1:])
    except EventServiceError as exc:
        logger.error("Daily sync failed: %s (code=%s)", exc, exc.code)
        return 1
    if report.status is not IngestionStatus.OK:
        logger.error("Daily sync skipped: %s", report.message)
        return 1
    if not report.verified:
        logger.warning("Daily sync found no verified events: %s", report.message)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
