"""Append-only conversation history and transcript export."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .tokens import TokenEstimator, estimate_tokens, total_tokens

MARKDOWN_SEPARATOR = "\n\n---\n\n"

_ROLE_HEADERS = {
    "user": "👤 **User**",
    "assistant": "🤖 **Assistant**",
}


class Role(str, Enum):
    """Speaker of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """A single immutable entry of the conversation log."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class MessageStore:
    """Hold the ordered conversation log.

    The log only grows by :meth:`append`. :meth:`clear` resets it to empty, or
    to a single system message when a system prompt is configured.
    """

    def __init__(
        self,
        system_prompt: str | None = None,
        estimator: TokenEstimator = estimate_tokens,
    ) -> None:
        self._estimator = estimator
        self._system_prompt = (system_prompt or "").strip() or None
        self._messages: list[ChatMessage] = []
        self.clear()

    @property
    def system_prompt(self) -> str | None:
        return self._system_prompt

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        """Return an immutable snapshot of the full log."""
        return tuple(self._messages)

    @property
    def conversation(self) -> tuple[ChatMessage, ...]:
        """Return the log without system entries, as rendered in the view."""
        return tuple(m for m in self._messages if m.role is not Role.SYSTEM)

    def set_system_prompt(self, system_prompt: str | None) -> None:
        """Change the system prompt, swapping the leading system entry."""
        self._system_prompt = (system_prompt or "").strip() or None
        if self._messages and self._messages[0].role is Role.SYSTEM:
            self._messages.pop(0)
        if self._system_prompt:
            self._messages.insert(0, ChatMessage(Role.SYSTEM, self._system_prompt))

    def clear(self) -> None:
        """Reset the log, keeping only the configured system prompt."""
        if self._system_prompt:
            self._messages = [ChatMessage(Role.SYSTEM, self._system_prompt)]
        else:
            self._messages = []

    def append(self, role: Role | str, content: str) -> ChatMessage:
        """Append a message and return it."""
        message = ChatMessage(Role(role), content)
        self._messages.append(message)
        return message

    def outbound_messages(self) -> list[dict[str, str]]:
        """Build the provider message list.

        The system prompt, when present, is always first; stored system
        entries are never sent twice.
        """
        outbound: list[dict[str, str]] = []
        if self._system_prompt:
            outbound.append({"role": Role.SYSTEM.value, "content": self._system_prompt})
        outbound.extend(m.to_dict() for m in self.conversation)
        return outbound

    def estimated_tokens(self) -> int:
        """Estimate tokens across the whole stored log."""
        return total_tokens((m.content for m in self._messages), self._estimator)

    def export_markdown(self) -> str:
        """Render the visible conversation as role-labelled markdown blocks."""
        blocks = [
            f"{_ROLE_HEADERS[message.role.value]}\n\n{message.content}"
            for message in self.conversation
        ]
        return MARKDOWN_SEPARATOR.join(blocks)
