"""Multi-line chat input: Enter sends, Shift+Enter breaks the line."""

from __future__ import annotations

from typing import Any

from textual import events
from textual.message import Message
from textual.widgets import TextArea

# Border rows drawn around the text.
INPUT_CHROME_ROWS = 2


def input_height(line_count: int, max_lines: int) -> int:
    """Return the widget height for ``line_count`` lines, capped at ``max_lines``."""
    visible = min(max(line_count, 1), max(max_lines, 1))
    return visible + INPUT_CHROME_ROWS


class ChatInput(TextArea):
    """Draft editor that grows with its content up to ``max_lines``."""

    DEFAULT_CSS = """
    ChatInput {
        height: 3;
    }
    """

    class Submitted(Message):
        """Posted when Enter is pressed without Shift."""

        def __init__(self, chat_input: ChatInput, text: str) -> None:
            super().__init__()
            self.chat_input = chat_input
            self.text = text

        @property
        def control(self) -> ChatInput:
            return self.chat_input

    def __init__(self, max_lines: int = 8, **kwargs: Any) -> None:
        kwargs.setdefault("soft_wrap", True)
        kwargs.setdefault("show_line_numbers", False)
        super().__init__(**kwargs)
        self.max_lines = max_lines

    async def _on_key(self, event: events.Key) -> None:
        # prevent_default() keeps TextArea's own key handler from running.
        if event.key == "enter":
            event.prevent_default()
            event.stop()
            self.post_message(self.Submitted(self, self.text))
        elif event.key == "shift+enter":
            event.prevent_default()
            event.stop()
            self.insert("\n")

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        self.refresh_height()

    def refresh_height(self) -> None:
        """Resize to the current line count."""
        self.styles.height = input_height(self.document.line_count, self.max_lines)

    def set_max_lines(self, max_lines: int) -> None:
        self.max_lines = max_lines
        self.refresh_height()
