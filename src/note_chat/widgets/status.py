"""Token counter header for the chat panel."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.app import ComposeResult
from textual.widgets import Label, Static


class TokenStatus(Static):
    """Render compact conversation telemetry.

    Segments (left to right):
        gpt-4o-mini  |  Tokens: 312  |  Draft: 4  |  ⏳
    """

    DEFAULT_CSS = """
    TokenStatus {
        layout: horizontal;
        height: auto;
        color: $text-muted;
    }
    TokenStatus Label {
        margin-right: 1;
    }
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.model = ""
        self.history_tokens = 0
        self.draft_tokens = 0
        self.loading = False

    def compose(self) -> ComposeResult:
        yield Label("no model", id="status_model")
        yield Label("|", id="status_sep1")
        yield Label("Tokens: 0", id="status_history_tokens")
        yield Label("|", id="status_sep2")
        yield Label("Draft: 0", id="status_draft_tokens")
        yield Label("", id="status_loading")

    def _label(self, label_id: str) -> Label:
        return self.query_one(f"#{label_id}", Label)

    def set_tokens(self, *, history_tokens: int, draft_tokens: int) -> None:
        self.history_tokens = history_tokens
        self.draft_tokens = draft_tokens
        self._label("status_history_tokens").update(f"Tokens: {history_tokens}")
        self._label("status_draft_tokens").update(f"Draft: {draft_tokens}")

    def set_model(self, model: str) -> None:
        self.model = model
        # Model ids are user text; never read them as markup.
        self._label("status_model").update(Text(model or "no model"))

    def set_loading(self, loading: bool) -> None:
        self.loading = loading
        self._label("status_loading").update("⏳" if loading else "")
