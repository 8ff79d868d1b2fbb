"""Sidebar chat panel composing header, conversation, and input."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Label, TextArea

from ..events import CONVERSATION_CHANGED, STREAM_CHUNK, TOKENS_CHANGED, Event
from .conversation import ConversationView
from .input import ChatInput
from .status import TokenStatus

if TYPE_CHECKING:
    from ..config import PanelSettings
    from ..conversation import ConversationManager, ConversationSnapshot


class ChatPanel(Vertical):
    """View over a :class:`ConversationManager`.

    The panel forwards user actions to the manager and re-renders from the
    events it publishes; it never mutates conversation state itself.
    """

    DEFAULT_CSS = """
    ChatPanel {
        width: 48;
        height: 100%;
        border-left: solid $panel;
    }
    ChatPanel > #panel_header {
        height: auto;
    }
    ChatPanel #panel_title {
        width: 1fr;
        text-style: bold;
        padding: 1 1 0 1;
    }
    ChatPanel #panel_header Button {
        min-width: 7;
    }
    ChatPanel > ConversationView {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("escape", "interrupt", "Interrupt", show=False),
    ]

    def __init__(
        self,
        manager: ConversationManager,
        title: str = "AI Chat",
        input_max_lines: int = 8,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.manager = manager
        self.panel_title = title
        self.input_max_lines = input_max_lines
        self._unsubscribers: list[Callable[[], None]] = []

    def compose(self) -> ComposeResult:
        with Horizontal(id="panel_header"):
            yield Label(self.panel_title, id="panel_title")
            yield Button("Clear", id="clear_button", variant="default")
            yield Button("Copy", id="copy_button", variant="primary")
        yield TokenStatus(id="token_status")
        yield ConversationView(id="conversation")
        yield ChatInput(max_lines=self.input_max_lines, id="chat_input")

    async def on_mount(self) -> None:
        self._w_status = self.query_one(TokenStatus)
        self._w_conversation = self.query_one(ConversationView)
        self._w_input = self.query_one(ChatInput)
        bus = self.manager.bus
        self._unsubscribers = [
            bus.subscribe(CONVERSATION_CHANGED, self._on_conversation_changed),
            bus.subscribe(STREAM_CHUNK, self._on_stream_chunk),
            bus.subscribe(TOKENS_CHANGED, self._on_tokens_changed),
        ]
        self._w_input.refresh_height()
        await self.render_snapshot(self.manager.snapshot())

    def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def apply_panel_settings(self, settings: PanelSettings) -> None:
        """Apply presentation settings loaded after mount."""
        self.panel_title = settings.title
        self.query_one("#panel_title", Label).update(settings.title)
        self.styles.width = settings.sidebar_width
        self.input_max_lines = settings.input_max_lines
        # May run before on_mount has cached the children.
        self.query_one(ChatInput).set_max_lines(settings.input_max_lines)
        self.query_one(TokenStatus).display = settings.show_token_counts

    async def render_snapshot(self, snapshot: ConversationSnapshot) -> None:
        """Bring every child in line with ``snapshot``."""
        await self._w_conversation.render_history(snapshot.conversation)
        if snapshot.is_loading and snapshot.streaming_buffer:
            await self._w_conversation.show_streaming(snapshot.streaming_buffer)
        else:
            await self._w_conversation.hide_streaming()
        self._w_status.set_model(self.manager.settings.model)
        self._w_status.set_loading(snapshot.is_loading)
        self._w_status.set_tokens(
            history_tokens=snapshot.history_tokens, draft_tokens=snapshot.draft_tokens
        )
        if self._draft_was_sent(snapshot):
            self._w_input.clear()
            self._w_input.refresh_height()

    def _draft_was_sent(self, snapshot: ConversationSnapshot) -> bool:
        # Only clear the editor for the text just sent; keystrokes typed since
        # must survive the re-render.
        if not snapshot.is_loading or snapshot.pending_input or not snapshot.conversation:
            return False
        last = snapshot.conversation[-1]
        return last.role.value == "user" and self._w_input.text.strip() == last.content

    async def _on_conversation_changed(self, event: Event) -> None:
        await self.render_snapshot(event.data["snapshot"])

    async def _on_stream_chunk(self, event: Event) -> None:
        await self._w_conversation.show_streaming(str(event.data.get("buffer", "")))

    def _on_tokens_changed(self, event: Event) -> None:
        self._w_status.set_tokens(
            history_tokens=int(event.data.get("history_tokens", 0)),
            draft_tokens=int(event.data.get("draft_tokens", 0)),
        )

    async def on_text_area_changed(self, event: TextArea.Changed) -> None:
        if event.text_area is not self._w_input:
            return
        await self.manager.set_input(self._w_input.text)

    def on_chat_input_submitted(self, event: ChatInput.Submitted) -> None:
        event.stop()
        self.send()

    def send(self) -> None:
        """Start a turn in a worker so the panel keeps handling input."""
        self.run_worker(self.manager.send_message(), name="send_message", group="chat")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "clear_button":
            event.stop()
            await self.manager.clear_conversation()
        elif event.button.id == "copy_button":
            event.stop()
            await self.manager.copy_as_markdown()

    async def action_interrupt(self) -> None:
        await self.manager.interrupt()
