"""Scrollable conversation view widget."""

from __future__ import annotations

from collections.abc import Iterable

from textual.containers import VerticalScroll

from ..message_store import ChatMessage
from .message import MessageBubble

STREAMING_BUBBLE_ID = "streaming_bubble"


class ConversationView(VerticalScroll):
    """A scrollable container that hosts message bubbles.

    Committed messages are rendered from snapshots; the in-flight reply lives
    in a single streaming bubble kept after them.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._rendered: tuple[ChatMessage, ...] = ()
        self._streaming: MessageBubble | None = None

    @property
    def rendered_messages(self) -> tuple[ChatMessage, ...]:
        return self._rendered

    @property
    def streaming_bubble(self) -> MessageBubble | None:
        return self._streaming

    async def add_message(self, content: str, role: str) -> MessageBubble:
        """Create, mount, and scroll to a new message bubble."""
        bubble = MessageBubble(content=content, role=role)
        bubble.add_class(f"message-{role}")
        if self._streaming is not None:
            await self.mount(bubble, before=self._streaming)
        else:
            await self.mount(bubble)
        self.scroll_end(animate=False)
        return bubble

    async def render_history(self, messages: Iterable[ChatMessage]) -> None:
        """Bring the mounted bubbles in line with ``messages``.

        Appends only the new tail when the history grew, and rebuilds the
        view otherwise (for example after a clear).
        """
        target = tuple(messages)
        if target[: len(self._rendered)] == self._rendered:
            new_messages = target[len(self._rendered) :]
        else:
            await self.clear_messages()
            new_messages = target
        for message in new_messages:
            await self.add_message(message.content, message.role.value)
        self._rendered = target

    async def clear_messages(self) -> None:
        await self.remove_children()
        self._rendered = ()
        self._streaming = None

    async def show_streaming(self, buffer: str) -> None:
        """Render the streaming buffer into the trailing bubble."""
        if self._streaming is None:
            self._streaming = MessageBubble(
                content=buffer, role="assistant", id=STREAMING_BUBBLE_ID
            )
            self._streaming.add_class("streaming")
            await self.mount(self._streaming)
        else:
            self._streaming.set_content(buffer)
        self.scroll_end(animate=False)

    async def hide_streaming(self) -> None:
        if self._streaming is not None:
            await self._streaming.remove()
            self._streaming = None
