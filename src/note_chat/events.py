"""Publish/subscribe bus the conversation manager uses to notify views.

Usage:
    bus = EventBus()

    def on_tokens(event):
        print(event.data["history_tokens"])

    bus.subscribe(TOKENS_CHANGED, on_tokens)
    await bus.publish(TOKENS_CHANGED, {"history_tokens": 12, "draft_tokens": 3})
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
import inspect
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

CONVERSATION_CHANGED = "conversation.changed"
STREAM_CHUNK = "stream.chunk"
TOKENS_CHANGED = "tokens.changed"


@dataclass
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str | None = None


Handler = Callable[[Event], Any]


class EventBus:
    """Deliver named events to subscribers in subscription order.

    Handlers may be plain functions or coroutine functions. A failing handler
    is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event and return a callable that unsubscribes."""
        self._subscribers.setdefault(event_name, []).append(handler)
        return lambda: self.unsubscribe(event_name, handler)

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(event_name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))

    async def publish(
        self,
        event_name: str,
        data: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> None:
        """Publish an event to all current subscribers."""
        event = Event(name=event_name, data=dict(data or {}), source=source)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - subscribers are untrusted.
                LOGGER.error(
                    "events.handler.failed",
                    extra={
                        "event": "events.handler.failed",
                        "event_name": event_name,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )

    def clear(self, event_name: str | None = None) -> None:
        """Drop subscribers for one event, or for all events."""
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()
