from __future__ import annotations

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"
DEFAULT_BROADCAST_CHAT_ID = "status@broadcast"


def normalize_user_id(value: str | None) -> str:
    """Strip the transport domain and device suffix from a jid."""
    if not value:
        return ""
    return value.split("@", 1)[0].split(":", 1)[0].strip()


def is_group_chat(chat_id: str) -> bool:
    return chat_id.endswith(GROUP_SUFFIX)


def user_jid(user_id: str) -> str:
    user_id = normalize_user_id(user_id)
    return f"{user_id}{USER_SUFFIX}" if user_id else ""


def own_ids(*values: str | None) -> frozenset[str]:
    return frozenset(
        normalized for normalized in (normalize_user_id(v) for v in values) if normalized
    )
