"""Adapter for local Ollama models through the official async SDK."""

from __future__ import annotations

from collections.abc import AsyncIterator
import logging
from typing import Any

import httpx
from ollama import AsyncClient, ResponseError

from ..exceptions import (
    ProviderConnectionError,
    ProviderError,
    ProviderModelNotFoundError,
    ProviderTimeoutError,
)
from .base import ChatRequest, Provider, ProviderAdapter

LOGGER = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"


class OllamaAdapter(ProviderAdapter):
    """Stream replies from an Ollama host. No API key is required."""

    provider = Provider.OLLAMA

    def __init__(
        self,
        host: str | None = None,
        client: Any | None = None,
        timeout: float | None = None,
        retries: int = 1,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        super().__init__(retries=retries, retry_backoff_seconds=retry_backoff_seconds)
        self.host = (host or DEFAULT_OLLAMA_HOST).rstrip("/")
        self._client = client if client is not None else AsyncClient(
            host=self.host, timeout=timeout
        )

    @staticmethod
    def _extract_content(chunk: Any) -> str:
        """Extract reply text from an SDK response object or a plain dict."""
        message = getattr(chunk, "message", None)
        if message is not None and not isinstance(chunk, dict):
            value = getattr(message, "content", None)
            return value if isinstance(value, str) else ""
        if isinstance(chunk, dict):
            message = chunk.get("message")
            if isinstance(message, dict):
                value = message.get("content")
                return value if isinstance(value, str) else ""
        return ""

    def _map_exception(self, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, ResponseError):
            if exc.status_code == 404:
                return ProviderModelNotFoundError(
                    f"ollama: model not found on {self.host} ({exc.error})."
                )
            return ProviderError(f"ollama: {exc.error}")
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeoutError(f"ollama: request to {self.host} timed out.")
        if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, ConnectionError)):
            return ProviderConnectionError(f"ollama: unable to connect to {self.host}.")
        return ProviderError(f"ollama: request failed ({exc}).")

    async def _iter_text(self, request: ChatRequest) -> AsyncIterator[str]:
        options = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
        }
        if not request.stream:
            response = await self._client.chat(
                model=request.model,
                messages=request.messages,
                stream=False,
                options=options,
            )
            yield self._extract_content(response)
            return

        stream = await self._client.chat(
            model=request.model,
            messages=request.messages,
            stream=True,
            options=options,
        )
        async for chunk in stream:
            yield self._extract_content(chunk)
