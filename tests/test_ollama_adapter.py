"""Tests for the Ollama SDK adapter using fake clients."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from types import SimpleNamespace
from typing import Any
import unittest

from ollama import ResponseError

from note_chat.exceptions import ProviderConnectionError, ProviderModelNotFoundError
from note_chat.providers import ChatRequest, ChunkEvent, CompleteEvent, ErrorEvent, OllamaAdapter


class FakeClient:
    """Fake async client streaming predefined chunks."""

    def __init__(self, chunks: list[Any], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def chat(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if not kwargs["stream"]:
            return self.chunks[0]

        async def stream_response() -> AsyncGenerator[Any, None]:
            for chunk in self.chunks:
                yield chunk

        return stream_response()


def _request(**overrides: Any) -> ChatRequest:
    values: dict[str, Any] = {
        "api_key": "",
        "model": "llama3.2",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.2,
        "max_tokens": 128,
    }
    values.update(overrides)
    return ChatRequest(**values)


class OllamaAdapterTests(unittest.IsolatedAsyncioTestCase):
    """Validate streaming, options mapping, and error mapping."""

    async def test_streams_dict_and_object_chunks(self) -> None:
        client = FakeClient(
            [
                {"message": {"role": "assistant", "content": "Hel"}},
                SimpleNamespace(message=SimpleNamespace(content="lo")),
                {"message": {"content": ""}, "done": True},
            ]
        )
        adapter = OllamaAdapter(client=client)
        events = [event async for event in adapter.stream(_request())]

        self.assertEqual(events, [ChunkEvent("Hel"), ChunkEvent("lo"), CompleteEvent("Hello")])
        call = client.calls[0]
        self.assertEqual(call["model"], "llama3.2")
        self.assertTrue(call["stream"])
        self.assertEqual(call["options"], {"temperature": 0.2, "num_predict": 128})

    async def test_non_stream_request(self) -> None:
        client = FakeClient([{"message": {"content": "whole reply"}}])
        adapter = OllamaAdapter(client=client)
        events = [event async for event in adapter.stream(_request(stream=False))]
        self.assertEqual(events, [ChunkEvent("whole reply"), CompleteEvent("whole reply")])
        self.assertFalse(client.calls[0]["stream"])

    async def test_missing_model_maps_to_not_found(self) -> None:
        client = FakeClient([], error=ResponseError("model 'nope' not found", 404))
        adapter = OllamaAdapter(client=client, retries=0)
        events = [event async for event in adapter.stream(_request(model="nope"))]
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ErrorEvent)
        self.assertIsInstance(events[0].error, ProviderModelNotFoundError)

    async def test_connection_refused_is_retried_then_reported(self) -> None:
        client = FakeClient([], error=ConnectionError("refused"))
        adapter = OllamaAdapter(client=client, retries=1, retry_backoff_seconds=0.0)
        events = [event async for event in adapter.stream(_request())]
        self.assertEqual(len(client.calls), 2)
        self.assertIsInstance(events[0].error, ProviderConnectionError)
        self.assertIn("localhost:11434", str(events[0].error))

    async def test_custom_host_is_normalized(self) -> None:
        adapter = OllamaAdapter(host="http://gpu-box:11434/", client=FakeClient([]))
        self.assertEqual(adapter.host, "http://gpu-box:11434")


if __name__ == "__main__":
    unittest.main()
