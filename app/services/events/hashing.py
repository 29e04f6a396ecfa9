"""Deterministic identity for stored events."""

from __future__ import annotations

import hashlib
from datetime import date

from app.models.event import EventInput


def compute_event_hash(title: str, start_date: date | str, venue: str | None, city: str | None) -> str:
    """Return the dedup key derived from title, start date, venue and city."""
    day = start_date.isoformat() if isinstance(start_date, date) else start_date
    payload = "|".join((title, day, venue or "", city or ""))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def event_hash(event: EventInput) -> str:
    return compute_event_hash(event.title, event.start_date, event.venue, event.city)
