from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from .errors import MalformedEvent
from .ids import DEFAULT_BROADCAST_CHAT_ID
from .model import (
    MEDIA_KINDS,
    PROTOCOL_REVOKE,
    TEXT_KINDS,
    Category,
    ChatEvent,
    Classification,
)

POLL_VOTE_RE = re.compile(r"^[1-9]$")
DEFAULT_POLL_MARKER = "\N{BAR CHART} Poll:"


@dataclass(frozen=True, slots=True)
class ClassifyContext:
    is_group: bool
    is_status: bool
    is_self: bool
    has_pending: bool
    prefix: str
    poll_marker: str


Predicate = Callable[[ChatEvent, ClassifyContext], bool]


@dataclass(frozen=True, slots=True)
class Rule:
    category: Category
    matches: Predicate


def _is_poll_vote(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return (
        event.kind == "extended-text"
        and POLL_VOTE_RE.match(event.text.strip()) is not None
        and event.quoted_text is not None
        and ctx.poll_marker in event.quoted_text
    )


def _is_status(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return ctx.is_status


def _is_media(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return event.kind in MEDIA_KINDS


def _is_pending_reply(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return not ctx.is_group and ctx.has_pending


def _is_delete_notice(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return event.kind == "protocol" and event.protocol_type == PROTOCOL_REVOKE


def _is_plain(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return event.kind in TEXT_KINDS


def _is_command(event: ChatEvent, ctx: ClassifyContext) -> bool:
    return bool(ctx.prefix) and event.text.startswith(ctx.prefix)


# first match wins
PRIMARY_RULES: tuple[Rule, ...] = (
    Rule(Category.POLL_VOTE, _is_poll_vote),
    Rule(Category.STATUS, _is_status),
    Rule(Category.MEDIA, _is_media),
    Rule(Category.PENDING_REPLY, _is_pending_reply),
    Rule(Category.DELETE_NOTICE, _is_delete_notice),
    Rule(Category.PLAIN, _is_plain),
)

# evaluated in addition to the primary match
FOLLOW_UP_RULES: dict[Category, Rule] = {
    Category.PLAIN: Rule(Category.COMMAND, _is_command),
}


class EventClassifier:
    def __init__(
        self,
        *,
        broadcast_chat_id: str = DEFAULT_BROADCAST_CHAT_ID,
        poll_marker: str = DEFAULT_POLL_MARKER,
        rules: tuple[Rule, ...] = PRIMARY_RULES,
        follow_ups: dict[Category, Rule] | None = None,
    ) -> None:
        self._broadcast_chat_id = broadcast_chat_id
        self._poll_marker = poll_marker
        self._rules = rules
        self._follow_ups = FOLLOW_UP_RULES if follow_ups is None else follow_ups

    def context(
        self, event: ChatEvent, *, prefix: str, has_pending: bool
    ) -> ClassifyContext:
        return ClassifyContext(
            is_group=event.is_group,
            is_status=event.chat_id == self._broadcast_chat_id,
            is_self=event.from_operator,
            has_pending=has_pending,
            prefix=prefix,
            poll_marker=self._poll_marker,
        )

    def classify(
        self, event: ChatEvent, *, prefix: str, has_pending: bool = False
    ) -> Classification:
        if not event.chat_id or not event.sender_id:
            raise MalformedEvent("missing chat or sender identity")
        ctx = self.context(event, prefix=prefix, has_pending=has_pending)
        for rule in self._rules:
            if not rule.matches(event, ctx):
                continue
            if rule.category is Category.STATUS and ctx.is_self:
                return Classification(Category.STATUS, discard=True)
            follow_up = self._follow_ups.get(rule.category)
            command = follow_up is not None and follow_up.matches(event, ctx)
            return Classification(rule.category, command=command)
        return Classification(None)
