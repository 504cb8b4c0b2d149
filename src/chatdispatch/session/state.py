"""Process-wide in-memory session state.

Created at process start, never persisted, cleared only by restart. Each
table sits behind a small protocol so a shared backing store can replace it
without touching the dispatcher.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Protocol

from ..logging import get_logger
from ..model import ChatEvent, Tenant

logger = get_logger(__name__)

DEFAULT_CHAT_LOG_LIMIT = 1000


@dataclass(slots=True)
class ActivityStat:
    sender_id: str
    display_name: str
    count: int
    last_event_id: str | None


class ChatLogStore(Protocol):
    def append(self, chat_id: str, event: ChatEvent) -> None: ...

    def recent(self, chat_id: str) -> list[ChatEvent]: ...

    def find(self, chat_id: str, message_id: str) -> ChatEvent | None: ...


class PendingRequestStore(Protocol):
    def set(self, sender_id: str) -> None: ...

    def has(self, sender_id: str) -> bool: ...

    def consume(self, sender_id: str) -> bool: ...


class ActivityStore(Protocol):
    def increment(
        self, chat_id: str, sender_id: str, display_name: str, event_id: str | None
    ) -> int: ...

    def stats(self, chat_id: str) -> list[ActivityStat]: ...


class MemoryChatLogStore:
    def __init__(self, *, limit: int = DEFAULT_CHAT_LOG_LIMIT) -> None:
        self._limit = limit
        self._logs: dict[str, deque[ChatEvent]] = {}

    def append(self, chat_id: str, event: ChatEvent) -> None:
        log = self._logs.get(chat_id)
        if log is None:
            log = self._logs[chat_id] = deque(maxlen=self._limit)
        log.append(event)

    def recent(self, chat_id: str) -> list[ChatEvent]:
        return list(self._logs.get(chat_id, ()))

    def find(self, chat_id: str, message_id: str) -> ChatEvent | None:
        for event in reversed(self._logs.get(chat_id, ())):
            if event.message_id == message_id:
                return event
        return None


class MemoryPendingRequestStore:
    def __init__(self) -> None:
        self._pending: set[str] = set()

    def set(self, sender_id: str) -> None:
        self._pending.add(sender_id)

    def has(self, sender_id: str) -> bool:
        return sender_id in self._pending

    def consume(self, sender_id: str) -> bool:
        if sender_id not in self._pending:
            return False
        self._pending.discard(sender_id)
        return True


class MemoryActivityStore:
    def __init__(self) -> None:
        self._stats: dict[str, dict[str, ActivityStat]] = defaultdict(dict)

    def increment(
        self, chat_id: str, sender_id: str, display_name: str, event_id: str | None
    ) -> int:
        chat = self._stats[chat_id]
        stat = chat.get(sender_id)
        if stat is None:
            stat = chat[sender_id] = ActivityStat(
                sender_id=sender_id,
                display_name=display_name,
                count=0,
                last_event_id=None,
            )
        stat.count += 1
        stat.display_name = display_name or stat.display_name
        stat.last_event_id = event_id
        return stat.count

    def stats(self, chat_id: str) -> list[ActivityStat]:
        return sorted(
            self._stats.get(chat_id, {}).values(),
            key=lambda stat: stat.count,
            reverse=True,
        )


class TenantRegistry:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._tenants: dict[str, Tenant] = {}

    def ensure(self, tenant_id: str, auth_id: str | None) -> Tenant:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            now = self._clock()
            tenant = self._tenants[tenant_id] = Tenant(
                tenant_id=tenant_id,
                auth_id=auth_id,
                first_seen=now,
                last_active=now,
            )
            logger.info("session.tenant.created", tenant_id=tenant_id)
        elif auth_id is not None and tenant.auth_id != auth_id:
            tenant.auth_id = auth_id
        return tenant

    def touch(self, tenant_id: str) -> None:
        tenant = self._tenants.get(tenant_id)
        if tenant is not None:
            tenant.last_active = self._clock()

    def get(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)


class SessionStateStore:
    def __init__(
        self,
        *,
        chat_logs: ChatLogStore | None = None,
        pending: PendingRequestStore | None = None,
        activity: ActivityStore | None = None,
        tenants: TenantRegistry | None = None,
        chat_log_limit: int = DEFAULT_CHAT_LOG_LIMIT,
    ) -> None:
        self.chat_logs = chat_logs or MemoryChatLogStore(limit=chat_log_limit)
        self.pending = pending or MemoryPendingRequestStore()
        self.activity = activity or MemoryActivityStore()
        self.tenants = tenants or TenantRegistry()

    def append_message(self, chat_id: str, event: ChatEvent) -> None:
        self.chat_logs.append(chat_id, event)

    def recent_messages(self, chat_id: str) -> list[ChatEvent]:
        return self.chat_logs.recent(chat_id)

    def find_message(self, chat_id: str, message_id: str) -> ChatEvent | None:
        return self.chat_logs.find(chat_id, message_id)

    def set_pending_request(self, sender_id: str) -> None:
        self.pending.set(sender_id)

    def has_pending_request(self, sender_id: str) -> bool:
        return self.pending.has(sender_id)

    def consume_pending_request(self, sender_id: str) -> bool:
        return self.pending.consume(sender_id)

    def increment_activity(
        self,
        chat_id: str,
        sender_id: str,
        display_name: str,
        event_id: str | None,
    ) -> int:
        return self.activity.increment(chat_id, sender_id, display_name, event_id)
