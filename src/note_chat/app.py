"""Terminal host that mounts the chat sidebar next to a notes pane."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer, Header, TextArea

from .config import Settings, load_settings_async
from .conversation import ConversationManager
from .exceptions import ClipboardError
from .logging_utils import configure_logging
from .widgets.panel import ChatPanel

LOGGER = logging.getLogger(__name__)


class AppNotifier:
    """Route manager notifications to Textual toasts."""

    def __init__(self, app: App[Any], title: str = "AI Chat") -> None:
        self._app = app
        self.title = title

    def notify(self, message: str) -> None:
        self._app.notify(message, title=self.title)

    def notify_error(self, message: str) -> None:
        self._app.notify(message, title=self.title, severity="error")


class AppClipboard:
    """Write to the terminal clipboard through Textual (OSC 52)."""

    def __init__(self, app: App[Any]) -> None:
        self._app = app

    async def write(self, text: str) -> None:
        try:
            self._app.copy_to_clipboard(text)
        except Exception as exc:  # noqa: BLE001 - driver specific failures.
            raise ClipboardError(f"Clipboard unavailable: {exc}") from exc


class NoteChatApp(App[None]):
    """Notes editor with the AI chat panel docked on the right."""

    TITLE = "NoteChat"

    CSS = """
    #workspace {
        height: 1fr;
    }
    #notes {
        width: 1fr;
    }
    """

    # Priority so the notes editor's own ctrl bindings (redo on ctrl+y) do not
    # shadow the chat shortcuts.
    BINDINGS = [
        Binding("ctrl+l", "clear_conversation", "Clear chat", priority=True),
        Binding("ctrl+y", "copy_conversation", "Copy chat", priority=True),
        Binding("escape", "interrupt", "Interrupt", show=False),
        Binding("ctrl+b", "toggle_sidebar", "Sidebar", priority=True),
        Binding("ctrl+q", "quit", "Quit", priority=True),
    ]

    def __init__(self, config_path: Path | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config_path = config_path
        self.settings: Settings | None = None
        self.manager = ConversationManager(
            notifier=AppNotifier(self),
            clipboard=AppClipboard(self),
        )

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="workspace"):
            yield TextArea(id="notes")
            yield ChatPanel(self.manager, id="sidebar")
        yield Footer()

    async def on_mount(self) -> None:
        """Load settings off the loop, then hydrate the panel."""
        settings = await load_settings_async(self.config_path)
        configure_logging(settings.logging)
        self.settings = settings
        await self.manager.apply_settings(settings.ai)
        self.query_one(ChatPanel).apply_panel_settings(settings.panel)
        LOGGER.info(
            "app.settings.loaded",
            extra={
                "event": "app.settings.loaded",
                "provider": settings.ai.provider.value,
                "model": settings.ai.model,
                "has_system_prompt": settings.ai.system_prompt is not None,
            },
        )

    async def on_unmount(self) -> None:
        await self.manager.aclose()

    async def action_clear_conversation(self) -> None:
        await self.manager.clear_conversation()

    async def action_copy_conversation(self) -> None:
        await self.manager.copy_as_markdown()

    async def action_interrupt(self) -> None:
        await self.manager.interrupt()

    def action_toggle_sidebar(self) -> None:
        panel = self.query_one(ChatPanel)
        panel.display = not panel.display
