from __future__ import annotations

from typing import Any

import msgspec

from .errors import MalformedEvent
from .ids import DEFAULT_BROADCAST_CHAT_ID, is_group_chat, normalize_user_id
from .model import ChatEvent, MessageKey, PayloadKind


_KIND_BY_FIELD: dict[str, PayloadKind] = {
    "conversation": "text",
    "extendedTextMessage": "extended-text",
    "imageMessage": "image",
    "videoMessage": "video",
    "documentMessage": "document",
    "audioMessage": "audio",
    "voiceMessage": "voice-note",
    "protocolMessage": "protocol",
}


class _Key(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    remote_jid: str | None = None
    participant: str | None = None
    from_me: bool = False
    id: str | None = None


class _QuotedMessage(msgspec.Struct, forbid_unknown_fields=False):
    conversation: str | None = None


class _ContextInfo(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    quoted_message: _QuotedMessage | None = None


class _ExtendedText(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    text: str | None = None
    context_info: _ContextInfo | None = None


class _Protocol(msgspec.Struct, forbid_unknown_fields=False):
    type: int | None = None
    key: _Key | None = None


class _Message(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    conversation: str | None = None
    extended_text_message: _ExtendedText | None = None
    protocol_message: _Protocol | None = None


class _Envelope(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    key: _Key
    message: _Message | None = None
    push_name: str | None = None
    message_timestamp: int | None = None


def _payload_kind(raw_message: Any) -> PayloadKind | None:
    if not isinstance(raw_message, dict):
        return None
    for field_name in raw_message:
        kind = _KIND_BY_FIELD.get(field_name)
        if kind is not None:
            return kind
    return None


def parse_event(
    raw: dict[str, Any],
    *,
    tenant_id: str,
    own_ids: frozenset[str] = frozenset(),
    broadcast_chat_id: str = DEFAULT_BROADCAST_CHAT_ID,
) -> ChatEvent:
    """Turn one transport payload into a ChatEvent.

    Raises MalformedEvent when the chat or sender identity is missing.
    Payloads outside the known kinds (stickers, reactions, wrappers, empty
    stubs) parse with kind ``"other"`` and classify to no category.
    """
    if not isinstance(raw, dict):
        raise MalformedEvent("event is not a mapping", raw)
    try:
        envelope = msgspec.convert(raw, type=_Envelope, strict=False)
    except msgspec.ValidationError as exc:
        raise MalformedEvent(f"invalid event payload: {exc}", raw) from exc

    key = envelope.key
    chat_id = (key.remote_jid or "").strip()
    if not chat_id:
        raise MalformedEvent("missing chat id", raw)
    sender_id = normalize_user_id(key.participant or chat_id)
    if not sender_id:
        raise MalformedEvent("missing sender id", raw)

    group = is_group_chat(chat_id)
    if not group and key.from_me:
        # in a direct chat the operator's own messages carry the peer's jid
        sender_id = tenant_id

    message = envelope.message or _Message()
    kind = _payload_kind(raw.get("message"))
    if chat_id == broadcast_chat_id:
        kind = "status-broadcast"
    if kind is None:
        kind = "other"

    text = message.conversation
    quoted_text: str | None = None
    extended = message.extended_text_message
    if text is None and extended is not None:
        text = extended.text
    if extended is not None and extended.context_info is not None:
        quoted = extended.context_info.quoted_message
        quoted_text = quoted.conversation if quoted is not None else None

    protocol_type: int | None = None
    revoked_id: str | None = None
    if message.protocol_message is not None:
        protocol_type = message.protocol_message.type
        revoked_key = message.protocol_message.key
        revoked_id = revoked_key.id if revoked_key is not None else None

    return ChatEvent(
        tenant_id=tenant_id,
        chat_id=chat_id,
        sender_id=sender_id,
        key=MessageKey(
            chat_id=chat_id,
            message_id=key.id,
            from_me=key.from_me,
            participant=key.participant,
        ),
        direction="from-operator" if key.from_me else "from-peer",
        kind=kind,
        text=text or "",
        quoted_text=quoted_text,
        protocol_type=protocol_type,
        revoked_id=revoked_id,
        push_name=envelope.push_name,
        timestamp=envelope.message_timestamp,
        sent_by_bot=key.from_me or sender_id in own_ids,
        raw=raw,
    )
