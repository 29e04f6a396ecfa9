"""Clients for the chat-style LLM endpoints used during ingestion."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, RateLimitError

from app.config import settings

PROTOCOL_OPENAI = "openai"
PROTOCOL_NATIVE = "native"


class LLMClientError(RuntimeError):
    """Base error for LLM client failures."""

    def __init__(self, message: str, code: str = "LLM_ERROR") -> None:
        super().__init__(message)
        self.code = code


class LLMRateLimitError(LLMClientError):
    """Raised when the endpoint responds with HTTP 429."""

    def __init__(self, message: str = "Rate limited by LLM endpoint") -> None:
        super().__init__(message, code="LLM_429")


class LLMTransportError(LLMClientError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, message: str = "LLM endpoint unreachable", code: str = "LLM_TRANSPORT") -> None:
        super().__init__(message, code=code)


class LLMTimeoutError(LLMTransportError):
    """Raised when LLM requests time out."""

    def __init__(self, message: str = "LLM request timed out") -> None:
        super().__init__(message, code="LLM_TIMEOUT")


class LLMUpstreamError(LLMClientError):
    """Raised for non-success statuses other than 429."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"LLM request failed: {status_code} {detail}".strip(), code=f"LLM_{status_code}")
        self.status_code = status_code


class LLMSchemaError(LLMClientError):
    """Raised when the response body does not carry the expected text field."""

    def __init__(self, message: str = "Unexpected LLM response schema") -> None:
        super().__init__(message, code="LLM_SCHEMA_ERR")


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one LLM endpoint."""

    endpoint: str
    model: str
    api_key: str | None
    protocol: str = PROTOCOL_OPENAI
    timeout: float = 120.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class ChatModelClient(Protocol):
    """Minimal contract for a prompt-in, text-out model endpoint."""

    def complete(self, *, system_prompt: str | None, user_prompt: str, temperature: float) -> str:
        ...


class ChatCompletionsClient:
    """OpenAI-compatible `/chat/completions` client."""

    def __init__(self, config: ProviderConfig, *, http_client: httpx.Client | None = None) -> None:
        if not config.api_key:
            raise ValueError("An API key is required to create a ChatCompletionsClient.")
        self._model = config.model
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.endpoint.rstrip("/"),
            timeout=config.timeout,
            max_retries=0,
            http_client=http_client,
        )

    def close(self) -> None:
        self._client.close()

    def complete(self, *, system_prompt: str | None, user_prompt: str, temperature: float) -> str:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
            )
        except RateLimitError as exc:
            raise LLMRateLimitError() from exc
        except APITimeoutError as exc:
            raise LLMTimeoutError() from exc
        except APIConnectionError as exc:
            raise LLMTransportError(f"HTTP error calling LLM endpoint: {exc}") from exc
        except APIStatusError as exc:
            raise LLMUpstreamError(exc.status_code, _short_detail(exc.message)) from exc
        return _extract_completion_text(response)


class NativeChatClient:
    """Client for the bespoke `/chat` protocol taking `{model, input}` and returning `{output}`."""

    def __init__(self, config: ProviderConfig, *, http_client: httpx.Client | None = None) -> None:
        if not config.api_key:
            raise ValueError("An API key is required to create a NativeChatClient.")
        self._api_key = config.api_key
        self._model = config.model
        self._url = f"{config.endpoint.rstrip('/')}/chat"
        self._timeout = config.timeout
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout)

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def complete(self, *, system_prompt: str | None, user_prompt: str, temperature: float) -> str:
        # The native protocol has no message roles; the system prompt leads the input.
        prompt = f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = self._http.post(
                self._url,
                json={"model": self._model, "input": prompt},
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise LLMTransportError(f"HTTP error calling LLM endpoint: {exc}") from exc

        if response.status_code == 429:
            raise LLMRateLimitError()
        if response.status_code >= 400:
            raise LLMUpstreamError(response.status_code, _short_detail(response.text))

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMSchemaError("Failed to decode LLM response JSON.") from exc
        output = data.get("output") if isinstance(data, dict) else None
        if not isinstance(output, str):
            raise LLMSchemaError("`output` missing from LLM response.")
        return output


def _extract_completion_text(response: Any) -> str:
    """Return choices[0].message.content as plain text."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise LLMSchemaError("`choices` missing from LLM response.")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    raise LLMSchemaError("Completion content is not text.")


def _short_detail(detail: str | None) -> str:
    return (detail or "")[:200]


def build_chat_client(config: ProviderConfig, *, http_client: httpx.Client | None = None) -> ChatModelClient | None:
    """Instantiate the client matching the configured protocol, or None without a credential."""
    if not config.configured:
        return None
    protocol = (config.protocol or PROTOCOL_OPENAI).strip().lower()
    if protocol == PROTOCOL_NATIVE:
        return NativeChatClient(config, http_client=http_client)
    if protocol != PROTOCOL_OPENAI:
        raise ValueError(f"Unsupported LLM protocol: {config.protocol}")
    return ChatCompletionsClient(config, http_client=http_client)


def listing_provider_config() -> ProviderConfig:
    """DeepSeek endpoint used to enumerate events."""
    return ProviderConfig(
        endpoint=settings.deepseek_endpoint,
        model=settings.deepseek_model,
        api_key=settings.deepseek_api_key,
        protocol=settings.deepseek_protocol,
        timeout=settings.llm_timeout_seconds,
    )


def verification_provider_config() -> ProviderConfig:
    """Qiniu endpoint used to fact-check candidates; always chat-completions shaped."""
    return ProviderConfig(
        endpoint=settings.qiniu_endpoint,
        model=settings.qiniu_model,
        api_key=settings.qiniu_api_key,
        protocol=PROTOCOL_OPENAI,
        timeout=settings.llm_timeout_seconds,
    )
