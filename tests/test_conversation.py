"""Tests for the conversation manager turn lifecycle."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any
import unittest

from note_chat.config import AISettings
from note_chat.conversation import ConversationManager, ConversationSnapshot
from note_chat.events import CONVERSATION_CHANGED, STREAM_CHUNK, TOKENS_CHANGED, Event
from note_chat.exceptions import ClipboardError, ProviderRateLimitError
from note_chat.message_store import ChatMessage, Role
from note_chat.providers import ChatRequest, ChunkEvent, CompleteEvent, ErrorEvent
from note_chat.state import ConversationState

READY = AISettings(
    aiApiKey="sk-test",
    aiModel="gpt-x",
    aiSystemPrompt="You are helpful.",
    aiTemperature=0.3,
    aiMaxTokens=256,
)


class FakeNotifier:
    def __init__(self) -> None:
        self.infos: list[str] = []
        self.errors: list[str] = []

    def notify(self, message: str) -> None:
        self.infos.append(message)

    def notify_error(self, message: str) -> None:
        self.errors.append(message)


class FakeClipboard:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.writes: list[str] = []

    async def write(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.writes.append(text)


class ScriptedAdapter:
    """Adapter double that replays a fixed list of stream events."""

    def __init__(self, events: list[Any]) -> None:
        self.events = events
        self.requests: list[ChatRequest] = []
        self.closed = False

    async def stream(self, request: ChatRequest) -> AsyncIterator[Any]:
        self.requests.append(request)
        for event in self.events:
            await asyncio.sleep(0)
            yield event

    async def aclose(self) -> None:
        self.closed = True


class BlockingAdapter(ScriptedAdapter):
    """Emits one chunk, then waits until released."""

    def __init__(self) -> None:
        super().__init__([])
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def stream(self, request: ChatRequest) -> AsyncIterator[Any]:
        self.requests.append(request)
        yield ChunkEvent("partial")
        self.started.set()
        await self.release.wait()
        yield CompleteEvent("partial reply")


class BrokenAdapter(ScriptedAdapter):
    """Raises while opening the stream, outside the event contract."""

    def __init__(self) -> None:
        super().__init__([])

    def stream(self, request: ChatRequest) -> AsyncIterator[Any]:
        raise RuntimeError("socket exploded")


class _ManagerTestCase(unittest.IsolatedAsyncioTestCase):
    def make_manager(
        self,
        adapter: Any,
        settings: AISettings = READY,
        clipboard: FakeClipboard | None = None,
        **kwargs: Any,
    ) -> ConversationManager:
        self.notifier = FakeNotifier()
        self.clipboard = clipboard or FakeClipboard()
        self.factory_calls: list[AISettings] = []

        def factory(active: AISettings) -> Any:
            self.factory_calls.append(active)
            return adapter

        manager = ConversationManager(
            self.notifier,
            self.clipboard,
            settings,
            adapter_factory=factory,
            **kwargs,
        )
        self.addAsyncCleanup(manager.aclose)
        return manager

    async def send(self, manager: ConversationManager, text: str) -> bool:
        await manager.set_input(text)
        return await manager.send_message()


class SendMessageTests(_ManagerTestCase):
    """Validate the happy path and the send preconditions."""

    async def test_two_plus_two_scenario(self) -> None:
        adapter = ScriptedAdapter([ChunkEvent("4"), CompleteEvent("4")])
        manager = self.make_manager(adapter)

        self.assertTrue(await self.send(manager, "2+2?"))

        self.assertEqual(manager.history[-1], ChatMessage(Role.ASSISTANT, "4"))
        self.assertFalse(manager.is_loading)
        self.assertEqual(manager.streaming_buffer, "")
        self.assertEqual(manager.pending_input, "")
        self.assertEqual(manager.state.state, ConversationState.IDLE)
        self.assertTrue(adapter.closed)
        self.assertEqual(self.notifier.errors, [])

        request = adapter.requests[0]
        self.assertEqual(
            request.messages,
            [
                {"role": "system", "content": "You are helpful."},
                {"role": "user", "content": "2+2?"},
            ],
        )
        self.assertEqual(request.api_key, "sk-test")
        self.assertEqual(request.model, "gpt-x")
        self.assertEqual(request.temperature, 0.3)
        self.assertEqual(request.max_tokens, 256)
        self.assertTrue(request.stream)

    async def test_committed_message_equals_full_text(self) -> None:
        sequences = [
            ["Hel", "lo"],
            ["a"],
            ["**bold**", "\n", "`code`"],
        ]
        for chunks in sequences:
            with self.subTest(chunks=chunks):
                full = "".join(chunks)
                events: list[Any] = [ChunkEvent(c) for c in chunks] + [CompleteEvent(full)]
                manager = self.make_manager(ScriptedAdapter(events))
                await self.send(manager, "go")
                self.assertEqual(manager.history[-1].content, full)
                self.assertEqual(manager.streaming_buffer, "")

    async def test_loading_from_send_until_terminal_event(self) -> None:
        adapter = ScriptedAdapter([ChunkEvent("x"), ChunkEvent("y"), CompleteEvent("xy")])
        manager = self.make_manager(adapter)
        snapshots: list[ConversationSnapshot] = []
        during_chunks: list[tuple[bool, str]] = []

        manager.bus.subscribe(
            CONVERSATION_CHANGED, lambda event: snapshots.append(event.data["snapshot"])
        )
        manager.bus.subscribe(
            STREAM_CHUNK,
            lambda event: during_chunks.append((manager.is_loading, event.data["buffer"])),
        )
        await self.send(manager, "hi")

        self.assertTrue(snapshots[0].is_loading)
        self.assertEqual(snapshots[0].state, ConversationState.SENDING)
        self.assertEqual(snapshots[0].conversation[-1], ChatMessage(Role.USER, "hi"))
        self.assertEqual(during_chunks, [(True, "x"), (True, "xy")])
        self.assertFalse(snapshots[-1].is_loading)
        self.assertEqual(snapshots[-1].state, ConversationState.IDLE)

    async def test_empty_draft_is_a_no_op(self) -> None:
        adapter = ScriptedAdapter([CompleteEvent("")])
        manager = self.make_manager(adapter)
        self.assertFalse(await self.send(manager, "   \n "))
        self.assertEqual(self.factory_calls, [])
        self.assertEqual(len(manager.history), 1)

    async def test_send_while_loading_is_a_no_op(self) -> None:
        adapter = BlockingAdapter()
        manager = self.make_manager(adapter)
        first = asyncio.create_task(self.send(manager, "first"))
        await adapter.started.wait()
        history_before = manager.history

        with self.assertLogs("note_chat.conversation", level="INFO") as logs:
            self.assertFalse(await self.send(manager, "second"))

        self.assertEqual(manager.history, history_before)
        self.assertEqual(len(self.factory_calls), 1)
        self.assertEqual(len(adapter.requests), 1)
        self.assertTrue(any("conversation.send.rejected" in line for line in logs.output))

        adapter.release.set()
        self.assertTrue(await first)
        self.assertEqual(manager.history[-1], ChatMessage(Role.ASSISTANT, "partial reply"))
        self.assertFalse(manager.is_loading)

    async def test_missing_api_key_scenario(self) -> None:
        adapter = ScriptedAdapter([CompleteEvent("never")])
        settings = AISettings(aiApiKey="", aiModel="gpt-x")
        manager = self.make_manager(adapter, settings=settings)

        self.assertFalse(await self.send(manager, "hello"))

        self.assertEqual(self.factory_calls, [])
        self.assertEqual(adapter.requests, [])
        self.assertEqual(manager.history, ())
        self.assertEqual(
            self.notifier.errors, ["Please configure aiApiKey in the AI settings."]
        )
        self.assertFalse(manager.is_loading)
        self.assertEqual(manager.state.state, ConversationState.IDLE)
        self.assertEqual(manager.pending_input, "hello")

    async def test_ollama_sends_without_key(self) -> None:
        adapter = ScriptedAdapter([CompleteEvent("hi")])
        settings = AISettings(aiProvider="ollama", aiModel="llama3.2")
        manager = self.make_manager(adapter, settings=settings)
        self.assertTrue(await self.send(manager, "hello"))
        self.assertEqual(adapter.requests[0].api_key, "")


class FailureTests(_ManagerTestCase):
    """Every failure is notified and leaves the manager idle."""

    def assert_idle(self, manager: ConversationManager) -> None:
        self.assertFalse(manager.is_loading)
        self.assertEqual(manager.streaming_buffer, "")
        self.assertEqual(manager.state.state, ConversationState.IDLE)

    async def test_error_event(self) -> None:
        adapter = ScriptedAdapter(
            [ChunkEvent("par"), ErrorEvent(ProviderRateLimitError("openai: rate limited"))]
        )
        manager = self.make_manager(adapter)
        self.assertTrue(await self.send(manager, "hi"))

        self.assertEqual(self.notifier.errors, ["openai: rate limited"])
        self.assertEqual(manager.history[-1], ChatMessage(Role.USER, "hi"))
        self.assert_idle(manager)
        self.assertTrue(adapter.closed)

    async def test_adapter_raising_outside_the_contract(self) -> None:
        manager = self.make_manager(BrokenAdapter())
        with self.assertLogs("note_chat.conversation", level="ERROR") as logs:
            self.assertTrue(await self.send(manager, "hi"))

        self.assertEqual(len(self.notifier.errors), 1)
        self.assertIn("socket exploded", self.notifier.errors[0])
        self.assertTrue(any("conversation.turn.crashed" in line for line in logs.output))
        self.assert_idle(manager)

    async def test_stream_without_terminal_event(self) -> None:
        manager = self.make_manager(ScriptedAdapter([ChunkEvent("dangling")]))
        await self.send(manager, "hi")
        self.assertEqual(len(self.notifier.errors), 1)
        self.assertIn("without completing", self.notifier.errors[0])
        self.assert_idle(manager)

    async def test_events_after_terminal_are_ignored(self) -> None:
        adapter = ScriptedAdapter(
            [CompleteEvent("done"), ChunkEvent("late"), ErrorEvent(ProviderRateLimitError("x"))]
        )
        manager = self.make_manager(adapter)
        with self.assertLogs("note_chat.conversation", level="WARNING") as logs:
            await self.send(manager, "hi")

        self.assertEqual(
            [m.content for m in manager.conversation], ["hi", "done"]
        )
        self.assertEqual(self.notifier.errors, [])
        self.assertEqual(
            sum("conversation.event.ignored" in line for line in logs.output), 2
        )
        self.assert_idle(manager)

    async def test_timeout(self) -> None:
        class Stalled(ScriptedAdapter):
            async def stream(self, request: ChatRequest) -> AsyncIterator[Any]:
                yield ChunkEvent("thinking")
                await asyncio.sleep(30)
                yield CompleteEvent("too late")

        settings = READY.model_copy(update={"request_timeout_seconds": 0.05})
        manager = self.make_manager(Stalled([]), settings=settings)
        self.assertTrue(await self.send(manager, "hi"))

        self.assertEqual(len(self.notifier.errors), 1)
        self.assertIn("0.05 seconds", self.notifier.errors[0])
        self.assertEqual(manager.history[-1], ChatMessage(Role.USER, "hi"))
        self.assert_idle(manager)

    async def test_adapter_timeout_without_turn_deadline(self) -> None:
        class ReadTimeout(ScriptedAdapter):
            """Times out on the first request only."""

            async def stream(self, request: ChatRequest) -> AsyncIterator[Any]:
                if not self.requests:
                    self.requests.append(request)
                    raise TimeoutError("socket read timed out")
                async for event in super().stream(request):
                    yield event

        adapter = ReadTimeout([CompleteEvent("ok")])
        manager = self.make_manager(adapter)
        self.assertIsNone(manager.settings.request_timeout_seconds)
        with self.assertLogs("note_chat.conversation", level="ERROR") as logs:
            self.assertTrue(await self.send(manager, "hello"))

        self.assertEqual(len(self.notifier.errors), 1)
        self.assertIn("socket read timed out", self.notifier.errors[0])
        self.assertTrue(any("conversation.turn.crashed" in line for line in logs.output))
        self.assert_idle(manager)
        self.assertTrue(adapter.closed)

        # The manager accepts the next turn.
        self.assertTrue(await self.send(manager, "again"))
        self.assertEqual(manager.history[-1], ChatMessage(Role.ASSISTANT, "ok"))

    async def test_adapter_factory_failure(self) -> None:
        notifier = FakeNotifier()

        def factory(settings: AISettings) -> Any:
            raise RuntimeError("client constructor failed")

        manager = ConversationManager(
            notifier, FakeClipboard(), READY, adapter_factory=factory
        )
        self.addAsyncCleanup(manager.aclose)
        with self.assertLogs("note_chat.conversation", level="ERROR") as logs:
            self.assertFalse(await self.send(manager, "hello"))

        self.assertEqual(len(notifier.errors), 1)
        self.assertIn("client constructor failed", notifier.errors[0])
        self.assertTrue(any("conversation.adapter.failed" in line for line in logs.output))
        self.assertEqual(manager.conversation, ())
        self.assertEqual(manager.pending_input, "hello")
        self.assert_idle(manager)

        # A second send is attempted rather than rejected as busy.
        self.assertFalse(await self.send(manager, "hello"))
        self.assertEqual(len(notifier.errors), 2)


class InterruptTests(_ManagerTestCase):
    """Validate cancellation of the in-flight turn."""

    async def test_interrupt_returns_to_idle(self) -> None:
        adapter = BlockingAdapter()
        manager = self.make_manager(adapter)
        send_task = asyncio.create_task(self.send(manager, "long question"))
        await adapter.started.wait()
        self.assertEqual(manager.streaming_buffer, "partial")

        self.assertTrue(await manager.interrupt())
        self.assertTrue(await send_task)

        self.assertFalse(manager.is_loading)
        self.assertEqual(manager.streaming_buffer, "")
        self.assertEqual(manager.state.state, ConversationState.IDLE)
        self.assertEqual(manager.history[-1], ChatMessage(Role.USER, "long question"))
        self.assertIn("Response interrupted.", self.notifier.infos)
        self.assertTrue(adapter.closed)

    async def test_interrupt_after_reply_landed(self) -> None:
        class SlowClose(ScriptedAdapter):
            def __init__(self, events: list[Any]) -> None:
                super().__init__(events)
                self.closing = asyncio.Event()
                self.release = asyncio.Event()

            async def aclose(self) -> None:
                self.closing.set()
                await self.release.wait()
                self.closed = True

        adapter = SlowClose([CompleteEvent("done")])
        manager = self.make_manager(adapter)
        send_task = asyncio.create_task(self.send(manager, "hi"))
        await adapter.closing.wait()
        self.assertEqual(manager.state.state, ConversationState.IDLE)

        interrupt_task = asyncio.create_task(manager.interrupt())
        await asyncio.sleep(0)
        adapter.release.set()

        self.assertFalse(await interrupt_task)
        self.assertTrue(await send_task)
        self.assertEqual(manager.state.state, ConversationState.IDLE)
        self.assertEqual(manager.history[-1], ChatMessage(Role.ASSISTANT, "done"))
        self.assertNotIn("Response interrupted.", self.notifier.infos)
        self.assertTrue(adapter.closed)

    async def test_interrupt_when_idle(self) -> None:
        manager = self.make_manager(ScriptedAdapter([]))
        self.assertFalse(await manager.interrupt())
        self.assertEqual(self.notifier.infos, [])


class ClearAndCopyTests(_ManagerTestCase):
    """Validate user actions outside of turns."""

    async def test_clear_keeps_only_system_prompt(self) -> None:
        manager = self.make_manager(ScriptedAdapter([CompleteEvent("yo")]))
        await self.send(manager, "hi")
        await manager.clear_conversation()

        self.assertEqual(manager.history, (ChatMessage(Role.SYSTEM, "You are helpful."),))
        self.assertEqual(manager.conversation, ())
        self.assertEqual(manager.streaming_buffer, "")
        self.assertEqual(self.notifier.infos, ["Conversation cleared."])

    async def test_clear_without_system_prompt(self) -> None:
        settings = READY.model_copy(update={"system_prompt": None})
        manager = self.make_manager(ScriptedAdapter([CompleteEvent("yo")]), settings=settings)
        await self.send(manager, "hi")
        await manager.clear_conversation()
        self.assertEqual(manager.history, ())

    async def test_clear_while_loading_interrupts_first(self) -> None:
        adapter = BlockingAdapter()
        manager = self.make_manager(adapter)
        send_task = asyncio.create_task(self.send(manager, "hi"))
        await adapter.started.wait()

        await manager.clear_conversation()
        await send_task

        self.assertEqual(manager.conversation, ())
        self.assertEqual(manager.streaming_buffer, "")
        self.assertFalse(manager.is_loading)
        self.assertEqual(
            self.notifier.infos, ["Response interrupted.", "Conversation cleared."]
        )

    async def test_copy_as_markdown(self) -> None:
        manager = self.make_manager(ScriptedAdapter([CompleteEvent("yo")]))
        await self.send(manager, "hi")

        self.assertTrue(await manager.copy_as_markdown())

        self.assertEqual(
            self.clipboard.writes,
            ["👤 **User**\n\nhi\n\n---\n\n🤖 **Assistant**\n\nyo"],
        )
        self.assertNotIn("You are helpful.", self.clipboard.writes[0])
        self.assertEqual(self.notifier.infos[-1], "Conversation copied as Markdown.")

    async def test_copy_empty_conversation(self) -> None:
        manager = self.make_manager(ScriptedAdapter([]))
        self.assertFalse(await manager.copy_as_markdown())
        self.assertEqual(self.clipboard.writes, [])
        self.assertEqual(self.notifier.infos, ["Nothing to copy yet."])

    async def test_copy_failure_is_reported(self) -> None:
        for error in (ClipboardError("no display"), OSError("xclip missing")):
            with self.subTest(error=type(error).__name__):
                manager = self.make_manager(
                    ScriptedAdapter([CompleteEvent("yo")]),
                    clipboard=FakeClipboard(error=error),
                )
                await self.send(manager, "hi")
                history = manager.history

                self.assertFalse(await manager.copy_as_markdown())

                self.assertEqual(manager.history, history)
                self.assertEqual(len(self.notifier.errors), 1)
                self.assertTrue(self.notifier.errors[0].startswith("Copy failed: "))
                self.assertIn(str(error), self.notifier.errors[0])


class TokenAccountingTests(_ManagerTestCase):
    """Validate explicit token recomputation and publication."""

    async def test_draft_and_history_tokens(self) -> None:
        manager = self.make_manager(
            ScriptedAdapter([ChunkEvent("four"), CompleteEvent("four")]), estimator=len
        )
        published: list[dict[str, Any]] = []
        manager.bus.subscribe(TOKENS_CHANGED, lambda event: published.append(event.data))

        self.assertEqual(manager.history_tokens, len("You are helpful."))
        await manager.set_input("abc")
        self.assertEqual(manager.draft_tokens, 3)
        self.assertEqual(published[-1]["draft_tokens"], 3)

        await manager.send_message()
        self.assertEqual(manager.draft_tokens, 0)
        self.assertEqual(manager.history_tokens, len("You are helpful.") + 3 + 4)
        self.assertEqual(published[-1]["history_tokens"], manager.history_tokens)

    async def test_apply_settings_swaps_system_prompt(self) -> None:
        manager = self.make_manager(ScriptedAdapter([CompleteEvent("yo")]))
        await self.send(manager, "hi")
        changes: list[Event] = []
        manager.bus.subscribe(CONVERSATION_CHANGED, changes.append)

        await manager.apply_settings(READY.model_copy(update={"system_prompt": "Be terse."}))

        self.assertEqual(manager.system_prompt, "Be terse.")
        self.assertEqual(manager.history[0], ChatMessage(Role.SYSTEM, "Be terse."))
        self.assertEqual([m.content for m in manager.conversation], ["hi", "yo"])
        self.assertEqual(len(changes), 1)


if __name__ == "__main__":
    unittest.main()
