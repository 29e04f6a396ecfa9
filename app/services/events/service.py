"""Event listing, sync and re-verification used by the API and the daily job."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError

from app.clients.llm import build_chat_client, listing_provider_config, verification_provider_config
from app.config import settings
from app.models.event import EventPage, EventQuery
from app.services.events.repositories import EventRepository, build_event_repository
from app.services.ingestion.fetcher import EventFetcher
from app.services.ingestion.orchestrator import IngestionOrchestrator, IngestionStatus
from app.services.ingestion.retry import RequestBudget
from app.services.ingestion.verifier import EventVerifier

logger = logging.getLogger(__name__)

Today = Callable[[], date]


class SyncReport(BaseModel):
    """Outcome of ingesting and storing events for one city."""

    city: str
    status: IngestionStatus
    target_dates: list[date]
    fetched: int = 0
    verified: int = 0
    inserted: int = 0
    updated: int = 0
    message: str


class VerificationEntry(BaseModel):
    id: int
    verified: bool
    confidence: float = 0.0
    reason: str = ""


class VerificationReport(BaseModel):
    """Re-verification results; stored rows are left untouched."""

    results: list[VerificationEntry] = Field(default_factory=list)
    missing: list[int] = Field(default_factory=list)


def local_today(timezone: str | None = None) -> date:
    return datetime.now(ZoneInfo(timezone or settings.sync_timezone)).date()


def default_target_date(today: date, offset_days: int | None = None) -> date:
    """The single date queried by an on-demand sync (a week ahead by default)."""
    offset = settings.sync_target_offset_days if offset_days is None else offset_days
    return today + timedelta(days=offset)


def rolling_window(start: date, days: int) -> list[date]:
    if days < 1:
        raise ValueError("days must be >= 1")
    return [start + timedelta(days=offset) for offset in range(days)]


class EventService:
    """Facade over the repository and the ingestion orchestrator."""

    def __init__(
        self,
        *,
        repository: EventRepository,
        orchestrator: IngestionOrchestrator,
        today: Today | None = None,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._today = today or local_today

    @property
    def repository(self) -> EventRepository:
        return self._repository

    @property
    def verification_available(self) -> bool:
        return self._orchestrator.verifier.available

    def list_events(self, query: EventQuery) -> EventPage:
        return self._repository.query(query)

    def sync_city(self, city: str, target_dates: Sequence[date] | None = None) -> SyncReport:
        """Ingest ``city`` for the given dates (default: one date a week ahead) and upsert the survivors."""
        dates = list(target_dates) if target_dates else [default_target_date(self._today())]
        result = self._orchestrator.ingest(city, dates)
        if result.status is not IngestionStatus.OK:
            return SyncReport(
                city=city,
                status=result.status,
                target_dates=dates,
                message=result.reason or result.status.value,
            )

        inputs = result.to_inputs()
        if not inputs:
            logger.warning("events.sync.empty", extra={"city": city, "dates": len(dates)})
            return SyncReport(
                city=city,
                status=result.status,
                target_dates=dates,
                fetched=result.fetched,
                message=f"No verified events found for {city}.",
            )

        upserted = self._repository.upsert_many(inputs)
        logger.info(
            "events.sync.completed",
            extra={
                "city": city,
                "fetched": result.fetched,
                "verified": len(inputs),
                "inserted": upserted.inserted,
                "updated": upserted.updated,
            },
        )
        return SyncReport(
            city=city,
            status=result.status,
            target_dates=dates,
            fetched=result.fetched,
            verified=len(inputs),
            inserted=upserted.inserted,
            updated=upserted.updated,
            message=f"Stored {len(inputs)} verified events for {city}.",
        )

    def verify_events(self, ids: Sequence[int]) -> VerificationReport:
        """Re-run verification on stored rows without modifying them."""
        verifier = self._orchestrator.verifier
        stored = self._repository.get_many(ids)
        found = {event.id for event in stored}
        report = VerificationReport(missing=[event_id for event_id in ids if event_id not in found])
        for event in stored:
            try:
                candidate = event.to_candidate()
            except ValidationError as exc:
                logger.warning("events.verify.invalid_row", extra={"id": event.id, "error": str(exc)[:200]})
                report.results.append(VerificationEntry(id=event.id, verified=False, reason="stored row is invalid"))
                continue
            outcome = verifier.verify(candidate, event.city)
            report.results.append(
                VerificationEntry(
                    id=event.id,
                    verified=outcome.verified,
                    confidence=outcome.confidence,
                    reason=outcome.reason,
                )
            )
        return report


def build_orchestrator() -> IngestionOrchestrator:
    """Wire fetcher and verifier from settings; missing keys leave the matching client unset."""
    fetcher = EventFetcher(build_chat_client(listing_provider_config()))
    verifier = EventVerifier(
        build_chat_client(verification_provider_config()),
        max_attempts=settings.verification_max_attempts,
        backoff_seconds=settings.verification_backoff_seconds,
        concurrency=settings.verification_concurrency,
        budget=RequestBudget(settings.verification_min_interval_seconds),
    )
    return IngestionOrchestrator(fetcher=fetcher, verifier=verifier)


_SERVICE_INSTANCE: EventService | None = None


def get_event_service() -> EventService:
    """Singleton accessor used by API routes and the daily job."""
    global _SERVICE_INSTANCE  # noqa: PLW0603
    if _SERVICE_INSTANCE is None:
        _SERVICE_INSTANCE = EventService(
            repository=build_event_repository(),
            orchestrator=build_orchestrator(),
        )
    return _SERVICE_INSTANCE
