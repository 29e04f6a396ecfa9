"""Fetch, extract, validate and verify listings for a city across target dates."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from threading import Lock

from app.models.event import EventInput, VerifiedEvent
from app.observability.metrics import metrics
from app.services.ingestion.extraction import extract_json_array
from app.services.ingestion.fetcher import EventFetcher
from app.services.ingestion.validation import validate_records
from app.services.ingestion.verifier import EventVerifier

logger = logging.getLogger(__name__)


class IngestionStatus(str, Enum):
    """How an ingestion run ended."""

    OK = "ok"
    UNAVAILABLE = "unavailable"
    BUSY = "busy"


@dataclass
class DateIngestion:
    """Counters for one (city, target date) unit of work."""

    target_date: date
    fetched: int = 0
    rejected: int = 0
    unverified: int = 0
    verified: int = 0
    failed: bool = False


@dataclass
class IngestionResult:
    """Verified events gathered for a city plus per-date bookkeeping."""

    city: str
    status: IngestionStatus = IngestionStatus.OK
    events: list[VerifiedEvent] = field(default_factory=list)
    dates: list[DateIngestion] = field(default_factory=list)
    reason: str | None = None

    @property
    def fetched(self) -> int:
        return sum(entry.fetched for entry in self.dates)

    def to_inputs(self) -> list[EventInput]:
        return [event.to_input() for event in self.events]


class CityLocks:
    """In-process advisory locks keyed by city."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}

    @contextmanager
    def hold(self, city: str) -> Iterator[bool]:
        with self._guard:
            lock = self._locks.setdefault(city, Lock())
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


class IngestionOrchestrator:
    """Runs fetch -> extract -> validate -> verify for each target date."""

    def __init__(
        self,
        *,
        fetcher: EventFetcher,
        verifier: EventVerifier,
        locks: CityLocks | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._verifier = verifier
        self._locks = locks or CityLocks()

    @property
    def verifier(self) -> EventVerifier:
        return self._verifier

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self._fetcher.available:
            missing.append("DEEPSEEK_API_KEY")
        if not self._verifier.available:
            missing.append("QINIU_API_KEY")
        return missing

    def ingest(self, city: str, target_dates: Sequence[date]) -> IngestionResult:
        """Collect verified events for ``city`` over ``target_dates``."""
        missing = self.missing_credentials()
        if missing:
            reason = f"ingestion unavailable: missing {', '.join(missing)}"
            logger.warning("ingestion.unavailable", extra={"city": city, "missing": missing})
            return IngestionResult(city=city, status=IngestionStatus.UNAVAILABLE, reason=reason)

        with self._locks.hold(city) as acquired:
            if not acquired:
                logger.warning("ingestion.busy", extra={"city": city})
                return IngestionResult(
                    city=city,
                    status=IngestionStatus.BUSY,
                    reason=f"an ingestion run for {city} is already in progress",
                )
            return self._run(city, target_dates)

    def _run(self, city: str, target_dates: Sequence[date]) -> IngestionResult:
        result = IngestionResult(city=city)
        start = time.perf_counter()
        for target_date in target_dates:
            try:
                summary, verified = self._ingest_date(city, target_date)
            except Exception:
                logger.exception(
                    "ingestion.date.failed",
                    extra={"city": city, "target_date": target_date.isoformat()},
                )
                metrics.increment("ingestion.date.failed", tags={"city": city})
                summary, verified = DateIngestion(target_date=target_date, failed=True), []
            result.dates.append(summary)
            result.events.extend(verified)

        metrics.timing("ingestion.run.latency_ms", (time.perf_counter() - start) * 1000, tags={"city": city})
        logger.info(
            "ingestion.completed",
            extra={
                "city": city,
                "dates": len(result.dates),
                "fetched": result.fetched,
                "verified": len(result.events),
            },
        )
        return result

    def _ingest_date(self, city: str, target_date: date) -> tuple[DateIngestion, list[VerifiedEvent]]:
        summary = DateIngestion(target_date=target_date)
        raw_text = self._fetcher.fetch(city, target_date)
        if not raw_text.strip():
            return summary, []

        records = extract_json_array(raw_text)
        if records is None:
            logger.warning(
                "ingestion.extract.failed",
                extra={"city": city, "target_date": target_date.isoformat(), "preview": raw_text[:200]},
            )
            metrics.increment("ingestion.extract.failed", tags={"city": city})
            return summary, []

        report = validate_records(records)
        summary.fetched = len(records)
        summary.rejected = report.rejected

        outcomes = self._verifier.verify_many(report.candidates, city)
        verified: list[VerifiedEvent] = []
        for candidate, outcome in zip(report.candidates, outcomes):
            if outcome.verified:
                verified.append(VerifiedEvent(candidate=candidate, city=city, outcome=outcome))
        summary.verified = len(verified)
        summary.unverified = len(report.candidates) - len(verified)

        metrics.increment("ingestion.candidates.rejected", summary.rejected, tags={"city": city})
        metrics.increment("ingestion.candidates.verified", summary.verified, tags={"city": city})
        logger.info(
            "ingestion.date.completed",
            extra={
                "city": city,
                "target_date": target_date.isoformat(),
                "fetched": summary.fetched,
                "rejected": summary.rejected,
                "unverified": summary.unverified,
                "verified": summary.verified,
            },
        )
        return summary, verified
