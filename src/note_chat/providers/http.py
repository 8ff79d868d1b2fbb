"""HTTP provider adapters built on httpx streaming responses."""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
import logging
from typing import Any

import httpx

from ..exceptions import (
    ProviderAuthenticationError,
    ProviderConnectionError,
    ProviderError,
    ProviderModelNotFoundError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from .base import ChatRequest, Provider, ProviderAdapter, drop_none

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URLS: dict[Provider, str] = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.DEEPSEEK: "https://api.deepseek.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com",
    Provider.GEMINI: "https://generativelanguage.googleapis.com",
}

ANTHROPIC_VERSION = "2023-06-01"
_STOP = object()


def _error_message(body: Any) -> str:
    """Pull a human-readable message out of a provider error payload."""
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        elif isinstance(error, str) and error.strip():
            return error.strip()
    return ""


def status_error(provider: Provider, status_code: int, body: Any) -> ProviderError:
    """Map an HTTP error status to the matching provider error."""
    detail = _error_message(body) or f"HTTP {status_code}"
    prefix = f"{provider.value}: "
    if status_code in (401, 403):
        return ProviderAuthenticationError(f"{prefix}authentication failed ({detail})")
    if status_code == 404:
        return ProviderModelNotFoundError(f"{prefix}model or endpoint not found ({detail})")
    if status_code == 429:
        return ProviderRateLimitError(f"{prefix}rate limited ({detail})")
    return ProviderError(f"{prefix}request failed with HTTP {status_code} ({detail})")


def _decode_body(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError:
        return raw.decode("utf-8", errors="replace")


class HttpProviderAdapter(ProviderAdapter):
    """Shared request/response plumbing for JSON-over-HTTP providers.

    Subclasses describe the endpoint, headers and payload, and parse either
    one server-sent-event ``data:`` payload or a full JSON response.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        retries: int = 1,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        super().__init__(retries=retries, retry_backoff_seconds=retry_backoff_seconds)
        self.base_url = (base_url or DEFAULT_BASE_URLS[self.provider]).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def endpoint(self, request: ChatRequest) -> str:
        raise NotImplementedError

    def headers(self, request: ChatRequest) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def payload(self, request: ChatRequest) -> dict[str, Any]:
        raise NotImplementedError

    def parse_stream_data(self, data: dict[str, Any]) -> Any:
        """Return reply text, ``None`` to skip, or ``_STOP`` to end the stream."""
        raise NotImplementedError

    def parse_response(self, body: dict[str, Any]) -> str:
        raise NotImplementedError

    def _map_exception(self, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeoutError(
                f"{self.provider.value}: request to {self.base_url} timed out."
            )
        if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
            return ProviderConnectionError(
                f"{self.provider.value}: unable to connect to {self.base_url}."
            )
        if isinstance(exc, ValueError):
            return ProviderError(f"{self.provider.value}: malformed response ({exc}).")
        return ProviderError(f"{self.provider.value}: request failed ({exc}).")

    async def _iter_text(self, request: ChatRequest) -> AsyncIterator[str]:
        url = self.endpoint(request)
        headers = self.headers(request)
        body = self.payload(request)
        LOGGER.debug(
            "provider.request.start",
            extra={
                "event": "provider.request.start",
                "provider": self.provider.value,
                "model": request.model,
                "stream": request.stream,
                "message_count": len(request.messages),
            },
        )
        if not request.stream:
            response = await self._client.post(url, headers=headers, json=body)
            if response.status_code >= 400:
                raise status_error(
                    self.provider, response.status_code, _decode_body(response.content)
                )
            yield self.parse_response(response.json())
            return

        async with self._client.stream("POST", url, headers=headers, json=body) as response:
            if response.status_code >= 400:
                raw = await response.aread()
                raise status_error(self.provider, response.status_code, _decode_body(raw))
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if not data:
                    continue
                if data == "[DONE]":
                    return
                parsed = self.parse_stream_data(json.loads(data))
                if parsed is _STOP:
                    return
                if parsed:
                    yield parsed


class OpenAICompatibleAdapter(HttpProviderAdapter):
    """OpenAI chat-completions protocol, also spoken by DeepSeek and custom hosts."""

    def __init__(self, provider: Provider = Provider.OPENAI, **kwargs: Any) -> None:
        self.provider = provider
        super().__init__(**kwargs)

    def endpoint(self, request: ChatRequest) -> str:
        if self.base_url.endswith("/chat/completions"):
            return self.base_url
        return f"{self.base_url}/chat/completions"

    def headers(self, request: ChatRequest) -> dict[str, str]:
        headers = super().headers(request)
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"
        return headers

    def payload(self, request: ChatRequest) -> dict[str, Any]:
        return {
            "model": request.model,
            "messages": request.messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }

    def parse_stream_data(self, data: dict[str, Any]) -> Any:
        if "error" in data:
            raise ProviderError(
                f"{self.provider.value}: {_error_message(data) or 'stream error'}"
            )
        choices = data.get("choices") or []
        if not choices:
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        return content if isinstance(content, str) else None

    def parse_response(self, body: dict[str, Any]) -> str:
        choices = body.get("choices") or []
        if not choices:
            raise ProviderError(f"{self.provider.value}: response contained no choices.")
        content = (choices[0].get("message") or {}).get("content")
        return content if isinstance(content, str) else ""


class AnthropicAdapter(HttpProviderAdapter):
    """Anthropic messages API."""

    provider = Provider.ANTHROPIC

    def endpoint(self, request: ChatRequest) -> str:
        return f"{self.base_url}/v1/messages"

    def headers(self, request: ChatRequest) -> dict[str, str]:
        headers = super().headers(request)
        headers["x-api-key"] = request.api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    def payload(self, request: ChatRequest) -> dict[str, Any]:
        system_parts = [m["content"] for m in request.messages if m["role"] == "system"]
        return drop_none(
            {
                "model": request.model,
                "max_tokens": request.max_tokens,
                # Anthropic accepts 0..1 only.
                "temperature": min(request.temperature, 1.0),
                "system": "\n\n".join(system_parts) or None,
                "messages": [m for m in request.messages if m["role"] != "system"],
                "stream": request.stream,
            }
        )

    def parse_stream_data(self, data: dict[str, Any]) -> Any:
        kind = data.get("type")
        if kind == "error":
            raise ProviderError(f"anthropic: {_error_message(data) or 'stream error'}")
        if kind == "message_stop":
            return _STOP
        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            text = delta.get("text")
            return text if isinstance(text, str) else None
        return None

    def parse_response(self, body: dict[str, Any]) -> str:
        blocks = body.get("content") or []
        return "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )


class GeminiAdapter(HttpProviderAdapter):
    """Google Gemini generateContent API."""

    provider = Provider.GEMINI

    def endpoint(self, request: ChatRequest) -> str:
        model_path = f"{self.base_url}/v1beta/models/{request.model}"
        if request.stream:
            return f"{model_path}:streamGenerateContent?alt=sse"
        return f"{model_path}:generateContent"

    def headers(self, request: ChatRequest) -> dict[str, str]:
        headers = super().headers(request)
        headers["x-goog-api-key"] = request.api_key
        return headers

    def payload(self, request: ChatRequest) -> dict[str, Any]:
        system_parts = [
            {"text": m["content"]} for m in request.messages if m["role"] == "system"
        ]
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in request.messages
            if m["role"] != "system"
        ]
        return drop_none(
            {
                "contents": contents,
                "systemInstruction": {"parts": system_parts} if system_parts else None,
                "generationConfig": {
                    "temperature": request.temperature,
                    "maxOutputTokens": request.max_tokens,
                },
            }
        )

    @staticmethod
    def _candidate_text(body: dict[str, Any]) -> str:
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(
            part.get("text", "") for part in parts if isinstance(part, dict)
        )

    def parse_stream_data(self, data: dict[str, Any]) -> Any:
        if "error" in data:
            raise ProviderError(f"gemini: {_error_message(data) or 'stream error'}")
        return self._candidate_text(data) or None

    def parse_response(self, body: dict[str, Any]) -> str:
        return self._candidate_text(body)
