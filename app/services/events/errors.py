"""Shared error classes for event storage and queries."""

from __future__ import annotations


class EventServiceError(RuntimeError):
    """Base exception raised by the event services."""

    def __init__(self, message: str, code: str = "EVENT_SERVICE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class EventPersistenceError(EventServiceError):
    """Raised when the repository fails to save or retrieve events."""
