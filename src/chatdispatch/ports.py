"""Interfaces of the collaborators the dispatcher talks to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, TypeAlias

from .model import ChatEvent, MessageKey

Verdict: TypeAlias = Literal["allow", "block"]


@dataclass(frozen=True, slots=True)
class StatusItem:
    chat_id: str
    message_id: str


class Transport(Protocol):
    own_id: str | None
    own_lid: str | None

    async def send_reaction(
        self, key: MessageKey, emoji: str, recipients: list[str]
    ) -> None: ...

    async def mark_read(self, keys: list[MessageKey]) -> None: ...

    async def set_presence(self, chat_id: str, presence: str) -> None: ...

    async def fetch_statuses(self) -> list[StatusItem]: ...


class SettingsStore(Protocol):
    async def get_tenant_setting(self, tenant_id: str, key: str) -> Any | None:
        """Return the stored value, or None when the setting does not exist."""
        ...

    async def upsert_tenant_setting(self, tenant_id: str, key: str, value: Any) -> None: ...


class SecurityCheck(Protocol):
    async def check_event(
        self, *, tenant_id: str, event: ChatEvent, tier: str
    ) -> Verdict: ...


class CommandInterpreter(Protocol):
    async def run(
        self,
        event: ChatEvent,
        *,
        tenant_id: str,
        auth_id: str | None,
        text: str,
        tier: str,
    ) -> None: ...


class TierResolver(Protocol):
    async def tier(self, auth_id: str | None) -> str: ...


class MetricsSink(Protocol):
    def record(
        self, tenant_id: str, auth_id: str | None, metrics: dict[str, float]
    ) -> None: ...


class Handlers(Protocol):
    async def poll_vote(self, event: ChatEvent) -> None: ...

    async def media(self, event: ChatEvent) -> None: ...

    async def pending_reply(self, event: ChatEvent) -> None: ...

    async def delete_notice(
        self, event: ChatEvent, original: ChatEvent | None
    ) -> None: ...


class NullHandlers:
    """Handlers that accept every event and do nothing."""

    async def poll_vote(self, event: ChatEvent) -> None:
        return None

    async def media(self, event: ChatEvent) -> None:
        return None

    async def pending_reply(self, event: ChatEvent) -> None:
        return None

    async def delete_notice(
        self, event: ChatEvent, original: ChatEvent | None
    ) -> None:
        return None


class AllowAllSecurity:
    async def check_event(
        self, *, tenant_id: str, event: ChatEvent, tier: str
    ) -> Verdict:
        return "allow"


class FixedTier:
    def __init__(self, tier: str) -> None:
        self._tier = tier

    async def tier(self, auth_id: str | None) -> str:
        return self._tier
