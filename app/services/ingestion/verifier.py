"""Fact-check each candidate with the verification model."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from app.clients.llm import (
    ChatModelClient,
    LLMClientError,
    LLMRateLimitError,
    LLMTransportError,
)
from app.models.event import EventCandidate, VerificationOutcome
from app.observability.metrics import metrics
from app.services.ingestion.extraction import extract_json_object
from app.services.ingestion.prompts import VERIFICATION_SYSTEM_PROMPT, build_verification_prompt
from app.services.ingestion.retry import RequestBudget, exponential_backoff

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], None]

VERIFICATION_TEMPERATURE = 0.0


def _log_retry_event(*, code: str, attempt: int, max_attempts: int, delay: float, title: str) -> None:
    logger.warning(
        "verification.retry",
        extra={
            "code": code,
            "attempt": attempt,
            "max_attempts": max_attempts,
            "delay_ms": round(delay * 1000, 2),
            "title": title[:120],
        },
    )


class EventVerifier:
    """Verifies candidates one request each, retrying rate limits and transport failures."""

    def __init__(
        self,
        client: ChatModelClient | None,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        concurrency: int = 1,
        budget: RequestBudget | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._client = client
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._concurrency = concurrency
        self._budget = budget or RequestBudget()
        self._sleep = sleep or time.sleep

    @property
    def available(self) -> bool:
        return self._client is not None

    def verify(self, candidate: EventCandidate, city: str) -> VerificationOutcome:
        """Return the verification decision for one candidate; never raises for upstream failures."""
        if self._client is None:
            logger.warning("verification.unconfigured", extra={"title": candidate.title})
            return VerificationOutcome.unverified("verification credential is not configured")

        prompt = build_verification_prompt(candidate, city)
        outcome = VerificationOutcome.unverified("no attempt made")
        for attempt, delay in exponential_backoff(
            max_attempts=self._max_attempts, base_delay=self._backoff_seconds
        ):
            self._budget.acquire()
            try:
                text = self._client.complete(
                    system_prompt=VERIFICATION_SYSTEM_PROMPT,
                    user_prompt=prompt,
                    temperature=VERIFICATION_TEMPERATURE,
                )
            except (LLMRateLimitError, LLMTransportError) as exc:
                if attempt >= self._max_attempts:
                    logger.error(
                        "verification.exhausted",
                        extra={"code": exc.code, "attempts": attempt, "title": candidate.title},
                    )
                    outcome = VerificationOutcome.unverified(
                        f"gave up after {attempt} attempts ({exc.code})", attempts=attempt
                    )
                    break
                _log_retry_event(
                    code=exc.code,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    delay=delay,
                    title=candidate.title,
                )
                metrics.increment("verification.retry", tags={"code": exc.code})
                self._sleep(delay)
                continue
            except LLMClientError as exc:
                logger.error(
                    "verification.failed",
                    extra={"code": exc.code, "attempt": attempt, "title": candidate.title},
                )
                outcome = VerificationOutcome.unverified(f"upstream error ({exc.code})", attempts=attempt)
                break
            outcome = interpret_verification(text, attempts=attempt)
            break

        metrics.increment("verification.result", tags={"verified": outcome.verified})
        if not outcome.verified:
            logger.info(
                "verification.rejected",
                extra={"title": candidate.title, "reason": outcome.reason, "attempts": outcome.attempts},
            )
        return outcome

    def verify_many(self, candidates: Sequence[EventCandidate], city: str) -> list[VerificationOutcome]:
        """Verify a batch in order; a bounded pool is used when concurrency > 1."""
        if not candidates:
            return []
        if self._concurrency == 1 or len(candidates) == 1:
            return [self.verify(candidate, city) for candidate in candidates]
        workers = min(self._concurrency, len(candidates))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="verify") as executor:
            return list(executor.map(lambda candidate: self.verify(candidate, city), candidates))


def interpret_verification(text: str, *, attempts: int = 1) -> VerificationOutcome:
    """Map a model answer onto a VerificationOutcome; anything unexpected is unverified."""
    payload = extract_json_object(text)
    if payload is None:
        logger.warning("verification.unparseable", extra={"preview": (text or "")[:200]})
        return VerificationOutcome.unverified("response was not a JSON object", attempts=attempts)

    verified = payload.get("verified")
    if not isinstance(verified, bool):
        logger.warning("verification.missing_flag", extra={"payload": str(payload)[:200]})
        return VerificationOutcome.unverified("response lacked a boolean `verified`", attempts=attempts)

    reason = payload.get("reason")
    return VerificationOutcome(
        verified=verified,
        confidence=_coerce_confidence(payload.get("confidence")),
        reason=reason if isinstance(reason, str) else "",
        attempts=attempts,
    )


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, min(1.0, float(value)))
