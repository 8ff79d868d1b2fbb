"""Turn phases for one conversation and lock-protected moves between them."""

from __future__ import annotations

import asyncio
from enum import Enum


class ConversationState(str, Enum):
    """Phase of the current send turn.

    A turn goes IDLE -> VALIDATING -> SENDING -> IDLE; an interrupt passes
    through CANCELLING on the way back to IDLE. A rejected send goes straight
    from VALIDATING back to IDLE.
    """

    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    SENDING = "SENDING"
    CANCELLING = "CANCELLING"


class StateManager:
    """Serialize phase changes so only one turn can leave IDLE at a time."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = ConversationState.IDLE

    @property
    def state(self) -> ConversationState:
        """Last committed phase, read without locking."""
        return self._state

    async def transition_to(self, new_state: ConversationState) -> None:
        async with self._lock:
            self._state = new_state

    async def transition_if(
        self,
        expected_state: ConversationState,
        new_state: ConversationState,
    ) -> bool:
        """Move to ``new_state`` only from ``expected_state``."""
        async with self._lock:
            if self._state != expected_state:
                return False
            self._state = new_state
            return True
