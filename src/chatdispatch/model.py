"""Chatdispatch domain model types (events, tenants, categories, resolved values)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Literal, TypeAlias, TypeVar

T = TypeVar("T")

PayloadKind: TypeAlias = Literal[
    "text",
    "extended-text",
    "image",
    "video",
    "document",
    "audio",
    "voice-note",
    "protocol",
    "status-broadcast",
    "other",
]

Direction: TypeAlias = Literal["from-operator", "from-peer"]

ResolvedSource: TypeAlias = Literal["cache", "store", "default"]

MEDIA_KINDS: frozenset[str] = frozenset(
    {"image", "video", "document", "audio", "voice-note"}
)
TEXT_KINDS: frozenset[str] = frozenset({"text", "extended-text"})

# protocol subtype carried by delete-for-everyone notices
PROTOCOL_REVOKE = 0


class OperatingMode(str, Enum):
    SELF_ONLY = "self-only"
    ADMIN_ASSISTED = "admin-assisted"

    @classmethod
    def parse(cls, value: object) -> "OperatingMode | None":
        if isinstance(value, OperatingMode):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        aliases = {
            "me": cls.SELF_ONLY,
            "self": cls.SELF_ONLY,
            "self-only": cls.SELF_ONLY,
            "admin": cls.ADMIN_ASSISTED,
            "admin-assisted": cls.ADMIN_ASSISTED,
        }
        return aliases.get(normalized)


class Category(str, Enum):
    POLL_VOTE = "poll_vote"
    STATUS = "status"
    MEDIA = "media"
    PENDING_REPLY = "pending_reply"
    DELETE_NOTICE = "delete_notice"
    PLAIN = "plain"
    COMMAND = "command"


@dataclass(frozen=True, slots=True)
class MessageKey:
    chat_id: str
    message_id: str | None
    from_me: bool
    participant: str | None = None


@dataclass(frozen=True, slots=True)
class ChatEvent:
    tenant_id: str
    chat_id: str
    sender_id: str
    key: MessageKey
    direction: Direction
    kind: PayloadKind
    text: str = ""
    quoted_text: str | None = None
    protocol_type: int | None = None
    revoked_id: str | None = None
    push_name: str | None = None
    timestamp: int | None = None
    sent_by_bot: bool = False
    raw: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def message_id(self) -> str | None:
        return self.key.message_id

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    @property
    def from_operator(self) -> bool:
        return self.direction == "from-operator"

    @property
    def display_name(self) -> str:
        return self.push_name or self.sender_id


@dataclass(slots=True)
class Tenant:
    tenant_id: str
    auth_id: str | None
    first_seen: float
    last_active: float


@dataclass(frozen=True, slots=True)
class Resolved(Generic[T]):
    """A value plus where it came from.

    Defaults are values too: ``source == "default"`` marks the fallback path
    and ``error`` keeps the failure that forced it, if any.
    """

    value: T
    source: ResolvedSource
    error: Exception | None = None

    @property
    def is_default(self) -> bool:
        return self.source == "default"


@dataclass(frozen=True, slots=True)
class TenantConfig:
    prefix: str
    mode: OperatingMode


@dataclass(frozen=True, slots=True)
class Classification:
    category: Category | None
    command: bool = False
    discard: bool = False

    @property
    def categories(self) -> tuple[Category, ...]:
        if self.category is None:
            return ()
        if self.command:
            return (self.category, Category.COMMAND)
        return (self.category,)


@dataclass(slots=True)
class DispatchOutcome:
    tenant_id: str
    chat_id: str | None = None
    sender_id: str | None = None
    classification: Classification | None = None
    blocked: bool = False
    dropped: bool = False
    command_routed: bool = False
    handled: Category | None = None
    tier: str | None = None
    mode: OperatingMode | None = None
    errors: list[str] = field(default_factory=list)
    step_failures: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors and not self.dropped
