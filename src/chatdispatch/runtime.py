from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import anyio

from .batcher import BurstBatcher
from .cache import TenantSettings
from .classify import EventClassifier
from .commands import Notify, SettingsCommands
from .dispatcher import Dispatcher
from .handlers import StatusViewer
from .logging import get_logger
from .model import ChatEvent
from .ports import (
    CommandInterpreter,
    Handlers,
    MetricsSink,
    SecurityCheck,
    SettingsStore,
    TierResolver,
    Transport,
)
from .presence import PresenceThrottle
from .session import SessionStateStore
from .settings import DispatchSettings

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchRuntime:
    dispatcher: Dispatcher
    settings: TenantSettings
    state: SessionStateStore
    status_viewer: StatusViewer
    status_batcher: BurstBatcher[str, ChatEvent]

    async def connected(self, tenant_id: str) -> int:
        """Seed the tenant's mode and catch up on statuses posted while offline."""
        mode = await self.settings.ensure_mode(tenant_id)
        viewed = await self.status_viewer.view_unseen(tenant_id)
        logger.info(
            "runtime.tenant.connected",
            tenant_id=tenant_id,
            mode=mode.value,
            statuses_viewed=viewed,
        )
        return viewed


@asynccontextmanager
async def open_runtime(
    config: DispatchSettings,
    *,
    transport: Transport,
    store: SettingsStore,
    security: SecurityCheck,
    interpreter: CommandInterpreter | None,
    metrics: MetricsSink,
    tiers: TierResolver,
    handlers: Handlers,
    notify: Notify | None = None,
    state: SessionStateStore | None = None,
) -> AsyncIterator[DispatchRuntime]:
    """Wire a dispatcher and keep its status batches alive for the block.

    Leaving the block waits for already-armed status flushes to finish.
    """
    tenant_settings = TenantSettings(
        store, default_prefix=config.default_prefix, ttl_s=config.cache_ttl_s
    )
    state = state or SessionStateStore(chat_log_limit=config.chat_log_limit)
    viewer = StatusViewer(
        transport=transport, settings=tenant_settings, reaction=config.status_reaction
    )
    commands = SettingsCommands(
        settings=tenant_settings, delegate=interpreter, notify=notify
    )
    async with anyio.create_task_group() as tg:
        batcher: BurstBatcher[str, ChatEvent] = BurstBatcher(
            task_group=tg,
            process=viewer.view,
            delay_s=config.status_batch_delay_s,
        )
        dispatcher = Dispatcher(
            transport=transport,
            settings=tenant_settings,
            state=state,
            security=security,
            commands=commands,
            metrics=metrics,
            tiers=tiers,
            handlers=handlers,
            status_viewer=viewer,
            status_batcher=batcher,
            classifier=EventClassifier(
                broadcast_chat_id=config.broadcast_chat_id,
                poll_marker=config.poll_marker,
            ),
            presence=PresenceThrottle(
                transport=transport, cooldown_s=config.presence_cooldown_s
            ),
            broadcast_chat_id=config.broadcast_chat_id,
            default_tier=config.default_tier,
        )
        logger.debug("runtime.opened", batch_delay_s=config.status_batch_delay_s)
        yield DispatchRuntime(
            dispatcher=dispatcher,
            settings=tenant_settings,
            state=state,
            status_viewer=viewer,
            status_batcher=batcher,
        )
