"""Provider adapter contract: requests, stream events, and retry handling."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any

from ..exceptions import ProviderError

LOGGER = logging.getLogger(__name__)


class Provider(str, Enum):
    """Supported completion providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    CUSTOM = "custom"

    @property
    def requires_api_key(self) -> bool:
        return self is not Provider.OLLAMA


@dataclass(frozen=True)
class ChatRequest:
    """Everything an adapter needs for one completion call."""

    api_key: str
    model: str
    messages: list[dict[str, str]] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2000
    stream: bool = True


@dataclass(frozen=True)
class ChunkEvent:
    """An in-order fragment of the assistant reply."""

    text: str


@dataclass(frozen=True)
class CompleteEvent:
    """Terminal event carrying the full reply text."""

    full_text: str


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event carrying the failure."""

    error: ProviderError


StreamEvent = ChunkEvent | CompleteEvent | ErrorEvent


class ProviderAdapter:
    """Base class that turns a raw fragment stream into typed events.

    Subclasses implement :meth:`_iter_text`, yielding reply fragments, and
    :meth:`_map_exception`. :meth:`stream` guarantees in-order chunks followed
    by exactly one terminal event, with ``CompleteEvent.full_text`` equal to the
    concatenation of all chunks.
    """

    provider: Provider

    def __init__(self, retries: int = 1, retry_backoff_seconds: float = 0.5) -> None:
        self.retries = max(0, retries)
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)

    def _iter_text(self, request: ChatRequest) -> AsyncIterator[str]:
        raise NotImplementedError

    def _map_exception(self, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        return ProviderError(f"{self.provider.value} request failed: {exc}")

    async def aclose(self) -> None:
        """Release transport resources held by the adapter."""

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Yield chunk events and one terminal event for ``request``."""
        fragments: list[str] = []
        for attempt in range(self.retries + 1):
            try:
                async for text in self._iter_text(request):
                    if not text:
                        continue
                    fragments.append(text)
                    yield ChunkEvent(text)
                break
            except asyncio.CancelledError:
                LOGGER.info(
                    "provider.request.cancelled",
                    extra={
                        "event": "provider.request.cancelled",
                        "provider": self.provider.value,
                    },
                )
                raise
            except Exception as exc:  # noqa: BLE001 - transports fail in many ways.
                mapped = self._map_exception(exc)
                # Once text reached the caller a retry would duplicate it.
                if fragments or attempt >= self.retries:
                    yield ErrorEvent(mapped)
                    return
                LOGGER.warning(
                    "provider.request.retry",
                    extra={
                        "event": "provider.request.retry",
                        "provider": self.provider.value,
                        "attempt": attempt + 1,
                        "error_type": mapped.__class__.__name__,
                    },
                )
                await asyncio.sleep(self.retry_backoff_seconds * (attempt + 1))
        yield CompleteEvent("".join(fragments))


def drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    """Return ``payload`` without keys whose value is None."""
    return {key: value for key, value in payload.items() if value is not None}
