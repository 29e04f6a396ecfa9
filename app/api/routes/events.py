"""API endpoints for listing, syncing and re-verifying events."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from app.config import settings
from app.models.event import CITY_MAX_LENGTH, EventQuery, EventType, StoredEvent
from app.services.events.errors import EventServiceError
from app.services.events.service import EventService, VerificationReport, get_event_service
from app.services.ingestion.orchestrator import IngestionStatus

router = APIRouter()
logger = logging.getLogger(__name__)


class EventListResponse(BaseModel):
    """Paginated listing payload."""

    items: list[StoredEvent]
    total: int
    page: int
    page_size: int = Field(serialization_alias="pageSize")


class SyncResponse(BaseModel):
    city: str
    target_date: date = Field(serialization_alias="targetDate")
    inserted: int
    updated: int
    message: str


class VerifyEventsRequest(BaseModel):
    ids: list[int] = Field(min_length=1)

    @field_validator("ids")
    @classmethod
    def _unique_ids(cls, value: list[int]) -> list[int]:
        if len(set(value)) != len(value):
            raise ValueError("ids must be unique")
        return value


@router.get("/events", response_model=EventListResponse)
def list_events(
    type: EventType | None = Query(None, description="Filter by event type."),  # noqa: A002
    city: str | None = Query(None, description="Exact city match."),
    q: str | None = Query(None, description="Substring of title, venue or address."),
    from_date: date | None = Query(None, alias="from", description="Active on or after this date."),
    to_date: date | None = Query(None, alias="to", description="Starting on or before this date."),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    service: EventService = Depends(get_event_service),
) -> EventListResponse:
    """List stored events ordered by start date."""
    query = EventQuery(
        type=type,
        city=city or None,
        q=q or None,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    try:
        result = service.list_events(query)
    except EventServiceError as exc:
        logger.error("events.api.list_error", extra={"code": exc.code})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return EventListResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.post("/events/sync", response_model=SyncResponse)
def sync_events(
    city: str | None = Query(
        None, max_length=CITY_MAX_LENGTH, description="City to ingest (defaults to CRON_CITY)."
    ),
    service: EventService = Depends(get_event_service),
) -> SyncResponse:
    """Run one ingestion pass for the default target date and store the verified events."""
    target_city = city or settings.cron_city
    try:
        report = service.sync_city(target_city)
    except EventServiceError as exc:
        logger.error("events.api.sync_error", extra={"city": target_city, "code": exc.code})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    if report.status is IngestionStatus.UNAVAILABLE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=report.message)
    if report.status is IngestionStatus.BUSY:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=report.message)
    return SyncResponse(
        city=report.city,
        target_date=report.target_dates[0],
        inserted=report.inserted,
        updated=report.updated,
        message=report.message,
    )


@router.post("/events/verify", response_model=VerificationReport)
def verify_events(
    payload: VerifyEventsRequest,
    service: EventService = Depends(get_event_service),
) -> VerificationReport:
    """Re-verify stored events by id; rows are not modified."""
    if not service.verification_available:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="verification unavailable: missing QINIU_API_KEY",
        )
    try:
        return service.verify_events(payload.ids)
    except EventServiceError as exc:
        logger.error("events.api.verify_error", extra={"code": exc.code})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
