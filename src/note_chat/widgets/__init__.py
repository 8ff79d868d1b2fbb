"""Widget exports for the note_chat sidebar."""

from .conversation import ConversationView
from .input import ChatInput
from .message import MessageBubble
from .panel import ChatPanel
from .status import TokenStatus

__all__ = ["ChatInput", "ChatPanel", "ConversationView", "MessageBubble", "TokenStatus"]
