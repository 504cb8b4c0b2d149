from __future__ import annotations

import re
from typing import Awaitable, Callable

from .cache import TenantSettings
from .logging import get_logger
from .model import ChatEvent, OperatingMode
from .ports import CommandInterpreter
from .presence import PRESENCE_TYPES

logger = get_logger(__name__)

_COMMAND_NORMALIZE_RE = re.compile(r"[^a-z0-9_]")

Notify = Callable[[ChatEvent, str], Awaitable[None]]


def normalize_command(name: str) -> str:
    value = name.strip().lower()
    if not value:
        return ""
    return _COMMAND_NORMALIZE_RE.sub("", value)


def split_command(text: str, prefix: str) -> tuple[str, str]:
    body = text[len(prefix) :] if prefix and text.startswith(prefix) else text
    name, _, args = body.strip().partition(" ")
    return normalize_command(name), args.strip()


def _parse_toggle(value: str) -> bool | None:
    lowered = value.strip().lower()
    if lowered == "on":
        return True
    if lowered == "off":
        return False
    return None


class SettingsCommands:
    """Operator-only tenant settings commands.

    Recognized names are handled here and written through the settings
    caches; everything else goes to ``delegate``.
    """

    def __init__(
        self,
        *,
        settings: TenantSettings,
        delegate: CommandInterpreter | None = None,
        notify: Notify | None = None,
    ) -> None:
        self._settings = settings
        self._delegate = delegate
        self._notify = notify
        self._builtins: dict[str, Callable[[str, str], Awaitable[str]]] = {
            "setprefix": self._set_prefix,
            "mode": self._set_mode,
            "status": self._set_status,
            "readreceipts": self._set_read_receipts,
            "presence": self._set_presence,
        }

    async def run(
        self,
        event: ChatEvent,
        *,
        tenant_id: str,
        auth_id: str | None,
        text: str,
        tier: str,
    ) -> None:
        prefix = (await self._settings.prefix.get(tenant_id)).value
        name, args = split_command(text, prefix)
        builtin = self._builtins.get(name)
        if builtin is None or not event.from_operator:
            if self._delegate is not None:
                await self._delegate.run(
                    event, tenant_id=tenant_id, auth_id=auth_id, text=text, tier=tier
                )
            return
        reply = await builtin(tenant_id, args)
        logger.info("commands.settings", command=name, args=args)
        if self._notify is not None:
            await self._notify(event, reply)

    async def _set_prefix(self, tenant_id: str, args: str) -> str:
        prefix = args.strip()
        if not prefix or any(ch.isspace() for ch in prefix):
            return "usage: setprefix <prefix>"
        await self._settings.prefix.set(tenant_id, prefix)
        return f"prefix set to {prefix}"

    async def _set_mode(self, tenant_id: str, args: str) -> str:
        mode = OperatingMode.parse(args)
        if mode is None:
            logger.warning("commands.mode.invalid", value=args)
            return "usage: mode self|admin"
        await self._settings.mode.set(tenant_id, mode)
        return f"mode set to {mode.value}"

    async def _set_status(self, tenant_id: str, args: str) -> str:
        enabled = _parse_toggle(args)
        if enabled is None:
            return "usage: status on|off"
        await self._settings.status_seen.set(tenant_id, enabled)
        return "status viewing enabled" if enabled else "status viewing disabled"

    async def _set_read_receipts(self, tenant_id: str, args: str) -> str:
        enabled = _parse_toggle(args)
        if enabled is None:
            return "usage: readreceipts on|off"
        await self._settings.read_receipts.set(tenant_id, enabled)
        return "read receipts enabled" if enabled else "read receipts disabled"

    async def _set_presence(self, tenant_id: str, args: str) -> str:
        value = args.strip().lower()
        if value == "off":
            await self._settings.presence.set(tenant_id, "")
            return "presence disabled"
        if value not in PRESENCE_TYPES:
            return f"usage: presence {'|'.join(sorted(PRESENCE_TYPES))}|off"
        await self._settings.presence.set(tenant_id, value)
        return f"presence set to {value}"
