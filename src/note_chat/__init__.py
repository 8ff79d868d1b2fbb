"""Top-level package for the NoteChat sidebar."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import NoteChatApp
    from .config import AISettings, Settings, load_settings, load_settings_async
    from .conversation import ConversationManager, ConversationSnapshot
    from .exceptions import (
        ClipboardError,
        ConfigurationError,
        ConfigValidationError,
        NoteChatError,
        ProviderError,
    )
    from .message_store import ChatMessage, MessageStore, Role
    from .state import ConversationState, StateManager

__all__ = [
    "AISettings",
    "ChatMessage",
    "ClipboardError",
    "ConfigValidationError",
    "ConfigurationError",
    "ConversationManager",
    "ConversationSnapshot",
    "ConversationState",
    "MessageStore",
    "NoteChatApp",
    "NoteChatError",
    "ProviderError",
    "Role",
    "Settings",
    "StateManager",
    "load_settings",
    "load_settings_async",
]

_LAZY_IMPORTS: dict[str, str] = {
    "NoteChatApp": ".app",
    "AISettings": ".config",
    "Settings": ".config",
    "load_settings": ".config",
    "load_settings_async": ".config",
    "ConversationManager": ".conversation",
    "ConversationSnapshot": ".conversation",
    "ClipboardError": ".exceptions",
    "ConfigurationError": ".exceptions",
    "ConfigValidationError": ".exceptions",
    "NoteChatError": ".exceptions",
    "ProviderError": ".exceptions",
    "ChatMessage": ".message_store",
    "MessageStore": ".message_store",
    "Role": ".message_store",
    "ConversationState": ".state",
    "StateManager": ".state",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols to keep the UI dependencies out of plain imports."""
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(module_name, __name__), name)
