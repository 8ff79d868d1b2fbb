"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

from ..rendering import render_markup

ROLE_LABELS = {
    "user": "👤 User",
    "assistant": "🤖 Assistant",
}


class MessageBubble(Vertical):
    """Render a single chat message with a role header and marked-up content.

    The same bubble class renders committed messages and the streaming
    buffer, so both go through :func:`render_markup` identically.
    """

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
        margin: 0 0 1 0;
        padding: 0 1;
    }
    MessageBubble > .bubble-header {
        text-style: bold;
        color: $text-muted;
    }
    MessageBubble > .bubble-content {
        height: auto;
    }
    MessageBubble.streaming > .bubble-content {
        color: $text-muted;
    }
    """

    def __init__(self, content: str, role: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.message_content = content
        self.role = role
        self.add_class(f"role-{role}")
        self._content_widget: Static | None = None

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.capitalize())

    @property
    def markup(self) -> str:
        """Return the display markup for the current content."""
        return render_markup(self.message_content)

    def compose(self) -> ComposeResult:
        yield Static(self.role_label, classes="bubble-header", markup=False)
        self._content_widget = Static("", classes="bubble-content")
        yield self._content_widget

    def on_mount(self) -> None:
        self._refresh_content()

    def _refresh_content(self) -> None:
        if self._content_widget is None:
            return
        self._content_widget.update(Text.from_markup(self.markup))

    def set_content(self, content: str) -> None:
        """Update message content and rerender."""
        self.message_content = content
        self._refresh_content()
