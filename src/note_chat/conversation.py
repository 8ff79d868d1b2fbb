"""Conversation state manager: history, draft, streaming buffer, and turns.

All mutation of conversation state goes through :class:`ConversationManager`.
Views subscribe to its :class:`~note_chat.events.EventBus` and only ever see
consistent snapshots published after a transition.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any, Protocol

from .config import AISettings
from .events import CONVERSATION_CHANGED, STREAM_CHUNK, TOKENS_CHANGED, EventBus
from .exceptions import ClipboardError, ConfigurationError, ProviderError, ProviderTimeoutError
from .message_store import ChatMessage, MessageStore, Role
from .providers import ChatRequest, ChunkEvent, CompleteEvent, ErrorEvent, create_adapter
from .providers.base import ProviderAdapter
from .state import ConversationState, StateManager
from .tokens import TokenEstimator, estimate_tokens

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    """Fire-and-forget user notifications."""

    def notify(self, message: str) -> Any: ...

    def notify_error(self, message: str) -> Any: ...


class Clipboard(Protocol):
    """System clipboard access; ``write`` raises when the copy fails."""

    async def write(self, text: str) -> None: ...


AdapterFactory = Callable[[AISettings], ProviderAdapter]


def default_adapter_factory(settings: AISettings) -> ProviderAdapter:
    return create_adapter(
        settings.provider,
        settings.custom_api_url,
        timeout=settings.request_timeout_seconds,
        retries=settings.retries,
    )


@dataclass(frozen=True)
class ConversationSnapshot:
    """Immutable view of the manager after a transition."""

    conversation: tuple[ChatMessage, ...]
    pending_input: str
    streaming_buffer: str
    is_loading: bool
    state: ConversationState
    history_tokens: int
    draft_tokens: int


class ConversationManager:
    """Own one panel's conversation and drive its streaming turns."""

    def __init__(
        self,
        notifier: Notifier,
        clipboard: Clipboard,
        settings: AISettings | None = None,
        *,
        adapter_factory: AdapterFactory = default_adapter_factory,
        estimator: TokenEstimator = estimate_tokens,
        bus: EventBus | None = None,
    ) -> None:
        self._notifier = notifier
        self._clipboard = clipboard
        self._settings = settings or AISettings()
        self._adapter_factory = adapter_factory
        self._estimator = estimator
        self.bus = bus or EventBus()
        self.state = StateManager()
        self._store = MessageStore(self._settings.system_prompt, estimator)
        self._pending_input = ""
        self._streaming_buffer = ""
        self._is_loading = False
        self._turn_terminated = False
        self._active_turn: asyncio.Task[None] | None = None
        self._history_tokens = 0
        self._draft_tokens = 0
        self._recompute_tokens()

    @property
    def settings(self) -> AISettings:
        return self._settings

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return self._store.messages

    @property
    def conversation(self) -> tuple[ChatMessage, ...]:
        return self._store.conversation

    @property
    def system_prompt(self) -> str | None:
        return self._store.system_prompt

    @property
    def pending_input(self) -> str:
        return self._pending_input

    @property
    def streaming_buffer(self) -> str:
        return self._streaming_buffer

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def history_tokens(self) -> int:
        return self._history_tokens

    @property
    def draft_tokens(self) -> int:
        return self._draft_tokens

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            conversation=self._store.conversation,
            pending_input=self._pending_input,
            streaming_buffer=self._streaming_buffer,
            is_loading=self._is_loading,
            state=self.state.state,
            history_tokens=self._history_tokens,
            draft_tokens=self._draft_tokens,
        )

    def export_markdown(self) -> str:
        return self._store.export_markdown()

    # -- settings and draft -------------------------------------------------

    async def apply_settings(self, settings: AISettings) -> None:
        """Hydrate the manager from freshly loaded settings."""
        self._settings = settings
        if settings.system_prompt != self._store.system_prompt:
            self._store.set_system_prompt(settings.system_prompt)
        await self._refresh_tokens()
        await self._publish_change()

    async def set_input(self, text: str) -> None:
        """Replace the draft text and refresh the draft token estimate."""
        self._pending_input = text
        await self._refresh_tokens()

    # -- turn lifecycle -----------------------------------------------------

    async def send_message(self) -> bool:
        """Send the draft and stream the reply into the buffer.

        Returns ``True`` when a turn ran (whatever its outcome) and ``False``
        when the call was a no-op or was rejected.
        """
        text = self._pending_input.strip()
        if not text:
            return False
        if not await self.state.transition_if(
            ConversationState.IDLE, ConversationState.VALIDATING
        ):
            LOGGER.info(
                "conversation.send.rejected",
                extra={"event": "conversation.send.rejected", "reason": "busy"},
            )
            return False

        settings = self._settings
        try:
            settings.require_ready()
            adapter = self._adapter_factory(settings)
        except ConfigurationError as exc:
            await self._reject_send("configuration", str(exc))
            return False
        except Exception as exc:  # noqa: BLE001 - client constructors raise their own types.
            LOGGER.exception(
                "conversation.adapter.failed",
                extra={
                    "event": "conversation.adapter.failed",
                    "provider": settings.provider.value,
                    "error_type": type(exc).__name__,
                },
            )
            error = ProviderError(
                f"Could not create the {settings.provider.value} client: {exc}"
            )
            await self._reject_send("adapter", str(error))
            return False

        self._store.append(Role.USER, text)
        self._pending_input = ""
        self._streaming_buffer = ""
        self._is_loading = True
        self._turn_terminated = False
        await self.state.transition_to(ConversationState.SENDING)
        await self._refresh_tokens()
        await self._publish_change()

        request = ChatRequest(
            api_key=settings.api_key,
            model=settings.model,
            messages=self._store.outbound_messages(),
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            stream=True,
        )
        LOGGER.info(
            "conversation.turn.start",
            extra={
                "event": "conversation.turn.start",
                "provider": settings.provider.value,
                "model": settings.model,
                "message_count": len(request.messages),
            },
        )
        turn = asyncio.create_task(self._run_turn(adapter, request))
        self._active_turn = turn
        try:
            await asyncio.wait({turn})
        except asyncio.CancelledError:
            # The caller went away (panel unmounted); take the turn with it.
            turn.cancel()
            await asyncio.wait({turn})
            raise
        finally:
            self._active_turn = None
        if not turn.cancelled() and turn.exception() is not None:
            LOGGER.error(
                "conversation.turn.failed",
                exc_info=turn.exception(),
                extra={"event": "conversation.turn.failed"},
            )
        return True

    async def _reject_send(self, reason: str, message: str) -> None:
        await self.state.transition_to(ConversationState.IDLE)
        LOGGER.warning(
            "conversation.send.rejected",
            extra={
                "event": "conversation.send.rejected",
                "reason": reason,
                "error": message,
            },
        )
        self._notifier.notify_error(message)

    async def _run_turn(self, adapter: ProviderAdapter, request: ChatRequest) -> None:
        timeout = self._settings.request_timeout_seconds
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                async for event in adapter.stream(request):
                    if self._turn_terminated:
                        LOGGER.warning(
                            "conversation.event.ignored",
                            extra={
                                "event": "conversation.event.ignored",
                                "event_type": type(event).__name__,
                            },
                        )
                        continue
                    if isinstance(event, ChunkEvent):
                        await self._on_chunk(event.text)
                    elif isinstance(event, CompleteEvent):
                        await self._on_complete(event.full_text)
                    elif isinstance(event, ErrorEvent):
                        await self._on_error(event.error)
            if not self._turn_terminated:
                await self._on_error(
                    ProviderError("The provider closed the stream without completing.")
                )
        except TimeoutError as exc:
            if not deadline.expired():
                # Raised by the adapter itself, not by the turn deadline.
                await self._on_crash(exc)
            elif not self._turn_terminated:
                await self._on_error(
                    ProviderTimeoutError(f"No complete reply within {timeout:g} seconds.")
                )
        except asyncio.CancelledError:
            if not self._turn_terminated:
                await self._on_cancelled()
            raise
        except Exception as exc:  # noqa: BLE001 - adapters may raise outside the event contract.
            await self._on_crash(exc)
        finally:
            try:
                await adapter.aclose()
            finally:
                if not self._turn_terminated:
                    self._turn_terminated = True
                    await self._finish_turn()

    async def _on_crash(self, exc: Exception) -> None:
        LOGGER.exception(
            "conversation.turn.crashed",
            exc_info=exc,
            extra={
                "event": "conversation.turn.crashed",
                "error_type": type(exc).__name__,
            },
        )
        if not self._turn_terminated:
            await self._on_error(ProviderError(f"Unexpected provider failure: {exc}"))

    async def _on_chunk(self, text: str) -> None:
        self._streaming_buffer += text
        await self.bus.publish(
            STREAM_CHUNK,
            {"text": text, "buffer": self._streaming_buffer},
            source="conversation",
        )

    async def _on_complete(self, full_text: str) -> None:
        self._turn_terminated = True
        if full_text != self._streaming_buffer:
            LOGGER.warning(
                "conversation.stream.mismatch",
                extra={
                    "event": "conversation.stream.mismatch",
                    "buffer_length": len(self._streaming_buffer),
                    "full_length": len(full_text),
                },
            )
        self._store.append(Role.ASSISTANT, full_text)
        await self._finish_turn()
        LOGGER.info(
            "conversation.turn.complete",
            extra={"event": "conversation.turn.complete", "reply_length": len(full_text)},
        )

    async def _on_error(self, error: ProviderError) -> None:
        self._turn_terminated = True
        LOGGER.warning(
            "conversation.turn.error",
            extra={
                "event": "conversation.turn.error",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        self._notifier.notify_error(str(error))
        await self._finish_turn()

    async def _on_cancelled(self) -> None:
        self._turn_terminated = True
        LOGGER.info(
            "conversation.turn.cancelled",
            extra={"event": "conversation.turn.cancelled"},
        )
        self._notifier.notify("Response interrupted.")
        await self._finish_turn()

    async def _finish_turn(self) -> None:
        self._streaming_buffer = ""
        self._is_loading = False
        await self.state.transition_to(ConversationState.IDLE)
        await self._refresh_tokens()
        await self._publish_change()

    async def interrupt(self) -> bool:
        """Cancel the in-flight turn. Returns False when nothing was running."""
        turn = self._active_turn
        if turn is None or turn.done():
            return False
        if not await self.state.transition_if(
            ConversationState.SENDING, ConversationState.CANCELLING
        ):
            # The reply already landed; let the turn finish closing its adapter.
            await asyncio.wait({turn})
            return False
        turn.cancel()
        await asyncio.wait({turn})
        return True

    async def aclose(self) -> None:
        """Stop any in-flight turn when the panel goes away."""
        await self.interrupt()
        self.bus.clear()

    # -- user actions -------------------------------------------------------

    async def clear_conversation(self) -> None:
        """Reset history to the system prompt only and drop the buffer."""
        if self._is_loading:
            await self.interrupt()
        self._store.clear()
        self._streaming_buffer = ""
        await self._refresh_tokens()
        await self._publish_change()
        self._notifier.notify("Conversation cleared.")

    async def copy_as_markdown(self) -> bool:
        """Copy the visible conversation to the clipboard as markdown."""
        markdown = self._store.export_markdown()
        if not markdown:
            self._notifier.notify("Nothing to copy yet.")
            return False
        try:
            await self._clipboard.write(markdown)
        except Exception as exc:  # noqa: BLE001 - clipboard backends vary.
            error = exc if isinstance(exc, ClipboardError) else ClipboardError(str(exc))
            LOGGER.warning(
                "conversation.copy.failed",
                extra={"event": "conversation.copy.failed", "error": str(error)},
            )
            self._notifier.notify_error(f"Copy failed: {error}")
            return False
        self._notifier.notify("Conversation copied as Markdown.")
        return True

    # -- derived values -----------------------------------------------------

    def _recompute_tokens(self) -> None:
        self._history_tokens = self._store.estimated_tokens()
        self._draft_tokens = max(0, int(self._estimator(self._pending_input)))

    async def _refresh_tokens(self) -> None:
        self._recompute_tokens()
        await self.bus.publish(
            TOKENS_CHANGED,
            {
                "history_tokens": self._history_tokens,
                "draft_tokens": self._draft_tokens,
            },
            source="conversation",
        )

    async def _publish_change(self) -> None:
        await self.bus.publish(
            CONVERSATION_CHANGED, {"snapshot": self.snapshot()}, source="conversation"
        )
