from __future__ import annotations

import time
from typing import Callable

from .ports import Transport

PRESENCE_TYPES: frozenset[str] = frozenset(
    {"available", "unavailable", "composing", "recording", "paused"}
)


class PresenceThrottle:
    """Apply a tenant's standing presence to a chat at most once per cooldown."""

    def __init__(
        self,
        *,
        transport: Transport,
        cooldown_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._cooldown_s = cooldown_s
        self._clock = clock
        self._next_at: dict[tuple[str, str], float] = {}

    def __len__(self) -> int:
        return len(self._next_at)

    def _prune(self, now: float) -> None:
        expired = [key for key, next_at in self._next_at.items() if next_at <= now]
        for key in expired:
            del self._next_at[key]

    async def apply(self, tenant_id: str, chat_id: str, presence: str) -> bool:
        key = (tenant_id, chat_id)
        now = self._clock()
        if now < self._next_at.get(key, 0.0):
            return False
        # only cooling chats are tracked
        self._prune(now)
        self._next_at[key] = now + self._cooldown_s
        await self._transport.set_presence(chat_id, presence)
        return True
