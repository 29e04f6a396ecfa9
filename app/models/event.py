"""Domain models for event listings."""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

ISO_DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")

_HTTP_URL = TypeAdapter(HttpUrl)

# Column widths of the `events` table.
TITLE_MAX_LENGTH = 300
CITY_MAX_LENGTH = 50
VENUE_MAX_LENGTH = 200
ADDRESS_MAX_LENGTH = 300
SOURCE_URL_MAX_LENGTH = 500
PRICE_RANGE_MAX_LENGTH = 100
ORGANIZER_MAX_LENGTH = 200


class EventType(str, Enum):
    """Kinds of listings the system tracks."""

    EXPO = "expo"
    CONCERT = "concert"


def parse_iso_date(value: Any) -> date:
    """Parse a strict YYYY-MM-DD string into a calendar date."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not ISO_DATE_PATTERN.match(value):
        raise ValueError("date must be formatted as YYYY-MM-DD")
    return date.fromisoformat(value)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class EventCandidate(BaseModel):
    """Event record recovered from model output, not yet verified."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    type: EventType
    venue: str | None = Field(default=None, max_length=VENUE_MAX_LENGTH)
    address: str | None = Field(default=None, max_length=ADDRESS_MAX_LENGTH)
    start_date: date
    end_date: date | None = None
    source_url: str | None = Field(default=None, max_length=SOURCE_URL_MAX_LENGTH)
    price_range: str | None = Field(default=None, max_length=PRICE_RANGE_MAX_LENGTH)
    organizer: str | None = Field(default=None, max_length=ORGANIZER_MAX_LENGTH)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("venue", "address", "price_range", "organizer", "source_url", mode="before")
    @classmethod
    def _normalize_optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("start_date", mode="before")
    @classmethod
    def _parse_start_date(cls, value: Any) -> date:
        return parse_iso_date(value)

    @field_validator("end_date", mode="before")
    @classmethod
    def _parse_end_date(cls, value: Any) -> date | None:
        if value is None:
            return None
        return parse_iso_date(value)

    @field_validator("source_url")
    @classmethod
    def _check_source_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError("source_url must be an absolute http(s) URL") from exc
        return value

    @model_validator(mode="after")
    def _check_date_order(self) -> "EventCandidate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self


class VerificationOutcome(BaseModel):
    """Result of a fact-check request for one candidate."""

    verified: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str = ""
    attempts: int = 0

    @classmethod
    def unverified(cls, reason: str, *, attempts: int = 0) -> "VerificationOutcome":
        return cls(verified=False, confidence=0.0, reason=reason, attempts=attempts)


class VerifiedEvent(BaseModel):
    """Candidate paired with its verification outcome and the city it was fetched for."""

    candidate: EventCandidate
    city: str
    outcome: VerificationOutcome

    def to_input(self) -> "EventInput":
        return EventInput(city=self.city, **self.candidate.model_dump())


class EventInput(BaseModel):
    """Normalized event ready to be persisted."""

    title: str
    type: EventType
    city: str = Field(min_length=1, max_length=CITY_MAX_LENGTH)
    venue: str | None = None
    address: str | None = None
    start_date: date
    end_date: date | None = None
    source_url: str | None = None
    price_range: str | None = None
    organizer: str | None = None


class StoredEvent(EventInput):
    """Persisted event row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    hash: str
    created_at: datetime
    updated_at: datetime

    def to_candidate(self) -> EventCandidate:
        return EventCandidate.model_validate(
            self.model_dump(exclude={"id", "hash", "city", "created_at", "updated_at"})
        )


class UpsertResult(BaseModel):
    """Counts reported by a batch upsert."""

    inserted: int = 0
    updated: int = 0


class EventQuery(BaseModel):
    """Filters and pagination for listing stored events."""

    type: EventType | None = None
    city: str | None = None
    q: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class EventPage(BaseModel):
    """One page of stored events plus the unpaginated match count."""

    items: list[StoredEvent]
    total: int
    page: int
    page_size: int
