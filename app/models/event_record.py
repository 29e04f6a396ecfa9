"""SQLModel mapping for stored event rows."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import date, datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Column, Date, DateTime, Integer, String
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.event import (
    ADDRESS_MAX_LENGTH,
    CITY_MAX_LENGTH,
    ORGANIZER_MAX_LENGTH,
    PRICE_RANGE_MAX_LENGTH,
    SOURCE_URL_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    VENUE_MAX_LENGTH,
    StoredEvent,
)

# Columns overwritten when an upsert matches an existing hash.
MUTABLE_COLUMNS: tuple[str, ...] = (
    "type",
    "address",
    "source_url",
    "price_range",
    "organizer",
    "end_date",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


class EventRecord(SQLModel, table=True):
    """ORM model for persisted events, unique by content hash."""

    __tablename__ = "events"
    __table_args__ = (
        sa.UniqueConstraint("hash", name="uq_events_hash"),
        sa.Index("ix_events_start_date", "start_date"),
        sa.Index("ix_events_city", "city"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    title: str = Field(sa_column=Column(String(length=TITLE_MAX_LENGTH), nullable=False))
    type: str = Field(sa_column=Column(String(length=20), nullable=False))
    city: str = Field(sa_column=Column(String(length=CITY_MAX_LENGTH), nullable=False))
    venue: str | None = Field(default=None, sa_column=Column(String(length=VENUE_MAX_LENGTH), nullable=True))
    address: str | None = Field(default=None, sa_column=Column(String(length=ADDRESS_MAX_LENGTH), nullable=True))
    start_date: date = Field(sa_column=Column(Date, nullable=False))
    end_date: date | None = Field(default=None, sa_column=Column(Date, nullable=True))
    source_url: str | None = Field(default=None, sa_column=Column(String(length=SOURCE_URL_MAX_LENGTH), nullable=True))
    price_range: str | None = Field(default=None, sa_column=Column(String(length=PRICE_RANGE_MAX_LENGTH), nullable=True))
    organizer: str | None = Field(default=None, sa_column=Column(String(length=ORGANIZER_MAX_LENGTH), nullable=True))
    hash: str = Field(sa_column=Column(String(length=128), nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
        ),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
            onupdate=UtcNow(),
        ),
    )

    def to_stored_event(self) -> StoredEvent:
        """Hydrate the StoredEvent domain model from this row."""
        return StoredEvent.model_validate(self, from_attributes=True)
