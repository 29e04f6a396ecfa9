"""Per-record schema validation for extracted listings."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from app.models.event import EventCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    """Why a raw record was dropped."""

    reason: str
    record: Any = None


@dataclass
class ValidationReport:
    """Valid candidates and the records dropped alongside them."""

    candidates: list[EventCandidate] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)

    @property
    def rejected(self) -> int:
        return len(self.rejections)


def validate_record(raw: Any) -> EventCandidate | Rejection:
    """Normalize one raw record or explain why it was rejected."""
    if not isinstance(raw, dict):
        return Rejection(reason=f"expected an object, got {type(raw).__name__}", record=raw)
    try:
        return EventCandidate.model_validate(raw)
    except ValidationError as exc:
        return Rejection(reason=_summarize(exc), record=raw)


def validate_records(items: Iterable[Any]) -> ValidationReport:
    """Validate a batch; invalid records are dropped without affecting their siblings."""
    report = ValidationReport()
    for item in items:
        outcome = validate_record(item)
        if isinstance(outcome, EventCandidate):
            report.candidates.append(outcome)
            continue
        report.rejections.append(outcome)
        logger.debug(
            "ingestion.record.rejected",
            extra={"reason": outcome.reason, "record": _preview(item)},
        )
    if report.rejections:
        logger.warning(
            "ingestion.records.dropped",
            extra={"rejected": report.rejected, "accepted": len(report.candidates)},
        )
    return report


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(segment) for segment in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


def _preview(item: Any) -> str:
    try:
        rendered = json.dumps(item, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        rendered = repr(item)
    return rendered[:200]
