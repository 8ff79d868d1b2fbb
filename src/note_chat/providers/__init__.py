"""Completion provider adapters and the callback bridge."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from ..exceptions import ConfigurationError, ProviderError
from .base import (
    ChatRequest,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    Provider,
    ProviderAdapter,
    StreamEvent,
)
from .http import AnthropicAdapter, GeminiAdapter, OpenAICompatibleAdapter
from .ollama import OllamaAdapter

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AnthropicAdapter",
    "ChatOptions",
    "ChatRequest",
    "ChunkEvent",
    "CompleteEvent",
    "ErrorEvent",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAICompatibleAdapter",
    "Provider",
    "ProviderAdapter",
    "StreamEvent",
    "chat",
    "create_adapter",
]


def create_adapter(
    provider: Provider | str,
    custom_api_url: str | None = None,
    *,
    timeout: float | None = None,
    retries: int = 1,
    http_client: httpx.AsyncClient | None = None,
    ollama_client: Any | None = None,
) -> ProviderAdapter:
    """Build the adapter for ``provider``.

    ``custom_api_url`` overrides the default endpoint of any provider and is
    mandatory for :attr:`Provider.CUSTOM`.
    """
    try:
        provider = Provider(provider)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown AI provider {provider!r}.") from exc

    base_url = (custom_api_url or "").strip() or None
    if provider is Provider.OLLAMA:
        return OllamaAdapter(
            host=base_url, client=ollama_client, timeout=timeout, retries=retries
        )
    if provider is Provider.CUSTOM and base_url is None:
        raise ConfigurationError("The custom provider requires aiCustomApiUrl.")

    http_kwargs: dict[str, Any] = {
        "base_url": base_url,
        "client": http_client,
        "timeout": timeout,
        "retries": retries,
    }
    if provider is Provider.ANTHROPIC:
        return AnthropicAdapter(**http_kwargs)
    if provider is Provider.GEMINI:
        return GeminiAdapter(**http_kwargs)
    return OpenAICompatibleAdapter(provider=provider, **http_kwargs)


@dataclass
class ChatOptions:
    """Callback-style request options."""

    api_key: str
    model: str
    messages: list[dict[str, str]] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2000
    stream: bool = True
    on_chunk: Callable[[str], Any] | None = None
    on_complete: Callable[[str], Any] | None = None
    on_error: Callable[[ProviderError], Any] | None = None

    def to_request(self) -> ChatRequest:
        return ChatRequest(
            api_key=self.api_key,
            model=self.model,
            messages=list(self.messages),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=self.stream,
        )


async def chat(
    provider: Provider | str,
    options: ChatOptions,
    custom_api_url: str | None = None,
    adapter: ProviderAdapter | None = None,
) -> None:
    """Run one completion and drive the option callbacks from its events.

    ``on_chunk`` fires for each fragment in order, then exactly one of
    ``on_complete`` or ``on_error`` fires. Nothing fires after termination.
    """
    owned = adapter is None
    active = adapter or create_adapter(provider, custom_api_url)
    try:
        async for event in active.stream(options.to_request()):
            if isinstance(event, ChunkEvent):
                if options.on_chunk is not None:
                    options.on_chunk(event.text)
            elif isinstance(event, CompleteEvent):
                if options.on_complete is not None:
                    options.on_complete(event.full_text)
                return
            elif isinstance(event, ErrorEvent):
                if options.on_error is not None:
                    options.on_error(event.error)
                return
    finally:
        if owned:
            await active.aclose()
