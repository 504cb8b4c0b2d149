from __future__ import annotations

import json
from collections import Counter
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import anyio
import typer

from ..config import ConfigError
from ..dispatcher import InboundEvent
from ..logging import get_logger
from ..metrics import JsonlMetricsSink
from ..model import ChatEvent, MessageKey
from ..ports import AllowAllSecurity, FixedTier, NullHandlers, StatusItem
from ..runtime import open_runtime
from ..settings import DispatchSettings, load_settings
from ..store import SqliteSettingsStore

logger = get_logger(__name__)


class ReplayTransport:
    """Transport that records what the dispatcher would have sent."""

    def __init__(self, own_id: str | None = None) -> None:
        self.own_id = own_id
        self.own_lid: str | None = None
        self.calls: Counter[str] = Counter()

    async def send_reaction(
        self, key: MessageKey, emoji: str, recipients: list[str]
    ) -> None:
        self.calls["send_reaction"] += 1
        logger.info("replay.transport.reaction", chat_id=key.chat_id, emoji=emoji)

    async def mark_read(self, keys: list[MessageKey]) -> None:
        self.calls["mark_read"] += 1
        logger.info("replay.transport.read", count=len(keys))

    async def set_presence(self, chat_id: str, presence: str) -> None:
        self.calls["set_presence"] += 1
        logger.info("replay.transport.presence", chat_id=chat_id, presence=presence)

    async def fetch_statuses(self) -> list[StatusItem]:
        return []


class EchoInterpreter:
    def __init__(self) -> None:
        self.commands: list[str] = []

    async def run(
        self,
        event: ChatEvent,
        *,
        tenant_id: str,
        auth_id: str | None,
        text: str,
        tier: str,
    ) -> None:
        self.commands.append(text)
        typer.echo(f"command {text!r} from {event.sender_id} ({tier})")


def read_raw_events(path: Path) -> list[dict[str, Any]]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ConfigError(f"Failed to read events file {path}: {exc}") from exc
    events: list[dict[str, Any]] = []
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Malformed JSON on line {lineno} of {path}: {exc}") from None
        if isinstance(payload, dict):
            events.append(payload)
    return events


async def replay_events(
    config: DispatchSettings,
    raw_events: list[dict[str, Any]],
    *,
    tenant_id: str,
    auth_id: str | None,
) -> Counter[str]:
    transport = ReplayTransport(own_id=tenant_id)

    async def _stream() -> AsyncIterator[InboundEvent]:
        for raw in raw_events:
            yield InboundEvent(tenant_id=tenant_id, auth_id=auth_id, raw=raw)

    async with open_runtime(
        config,
        transport=transport,
        store=SqliteSettingsStore(config.store_path),
        security=AllowAllSecurity(),
        interpreter=EchoInterpreter(),
        metrics=JsonlMetricsSink(config.metrics_path),
        tiers=FixedTier(config.default_tier),
        handlers=NullHandlers(),
    ) as runtime:
        await runtime.connected(tenant_id)
        await runtime.dispatcher.serve(_stream())
    return transport.calls


def replay_cmd(
    events: Path = typer.Argument(..., help="JSONL file of raw transport events."),
    tenant: str = typer.Option(..., "--tenant", help="Tenant id owning the session."),
    auth: str | None = typer.Option(None, "--auth", help="Auth id of the operator."),
    config_path: Path | None = typer.Option(
        None, "--config", help="Path to chatdispatch.toml."
    ),
) -> None:
    """Replay recorded transport events through the dispatcher."""
    settings, _ = load_settings(config_path)
    raw_events = read_raw_events(events.expanduser())
    calls = anyio.run(
        lambda: replay_events(settings, raw_events, tenant_id=tenant, auth_id=auth)
    )
    typer.echo(f"replayed {len(raw_events)} events")
    for name, count in sorted(calls.items()):
        typer.echo(f"  {name}: {count}")
