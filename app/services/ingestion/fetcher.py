"""Primary listing requests: one prompt per (city, date)."""

from __future__ import annotations

import logging
import time
from datetime import date

from app.clients.llm import ChatModelClient, LLMClientError, LLMUpstreamError
from app.observability.metrics import metrics
from app.services.ingestion.prompts import LISTING_SYSTEM_PROMPT, build_listing_prompt

logger = logging.getLogger(__name__)

LISTING_TEMPERATURE = 0.2


class EventFetcher:
    """Asks the listing model for a city's events and returns its raw answer."""

    def __init__(self, client: ChatModelClient | None, *, temperature: float = LISTING_TEMPERATURE) -> None:
        self._client = client
        self._temperature = temperature

    @property
    def available(self) -> bool:
        return self._client is not None

    def fetch(self, city: str, target_date: date) -> str:
        """Return raw model text, or an empty string when unconfigured or on upstream failure."""
        if self._client is None:
            logger.warning(
                "ingestion.fetch.unconfigured",
                extra={"city": city, "target_date": target_date.isoformat()},
            )
            return ""

        tags = {"city": city}
        start = time.perf_counter()
        try:
            text = self._client.complete(
                system_prompt=LISTING_SYSTEM_PROMPT,
                user_prompt=build_listing_prompt(city, target_date),
                temperature=self._temperature,
            )
        except LLMClientError as exc:
            metrics.increment("ingestion.fetch.errors", tags={**tags, "code": exc.code})
            logger.error(
                "ingestion.fetch.failed",
                extra={
                    "city": city,
                    "target_date": target_date.isoformat(),
                    "code": exc.code,
                    "status_code": exc.status_code if isinstance(exc, LLMUpstreamError) else None,
                    "error": str(exc),
                },
            )
            return ""
        finally:
            metrics.timing("ingestion.fetch.latency_ms", (time.perf_counter() - start) * 1000, tags=tags)

        if not text.strip():
            logger.warning(
                "ingestion.fetch.empty",
                extra={"city": city, "target_date": target_date.isoformat()},
            )
        return text
