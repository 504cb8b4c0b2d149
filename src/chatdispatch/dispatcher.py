from __future__ import annotations

import time
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import anyio

from .batcher import BurstBatcher
from .cache import TenantSettings
from .classify import EventClassifier
from .errors import HandlerError, MalformedEvent, SecurityBlocked
from .handlers import DeleteNoticeResolver, StatusViewer
from .ids import DEFAULT_BROADCAST_CHAT_ID, own_ids
from .logging import bind_dispatch_context, get_logger, reset_context
from .model import Category, ChatEvent, Classification, DispatchOutcome, Resolved
from .parsing import parse_event
from .ports import (
    CommandInterpreter,
    Handlers,
    MetricsSink,
    SecurityCheck,
    TierResolver,
    Transport,
)
from .presence import PresenceThrottle
from .session import SessionStateStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class InboundEvent:
    tenant_id: str
    auth_id: str | None
    raw: dict[str, Any]


class Dispatcher:
    """Routes one inbound event at a time to exactly one handler.

    ``dispatch`` never raises: malformed events are dropped, a security block
    ends the dispatch, and handler failures are logged with tenant and sender
    context. Processing time is recorded for every attempt.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        settings: TenantSettings,
        state: SessionStateStore,
        security: SecurityCheck,
        commands: CommandInterpreter,
        metrics: MetricsSink,
        tiers: TierResolver,
        handlers: Handlers,
        status_viewer: StatusViewer,
        status_batcher: BurstBatcher[str, ChatEvent] | None = None,
        classifier: EventClassifier | None = None,
        presence: PresenceThrottle | None = None,
        broadcast_chat_id: str = DEFAULT_BROADCAST_CHAT_ID,
        default_tier: str = "free",
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._state = state
        self._security = security
        self._commands = commands
        self._metrics = metrics
        self._tiers = tiers
        self._handlers = handlers
        self._status_viewer = status_viewer
        self._status_batcher = status_batcher
        self._classifier = classifier or EventClassifier(
            broadcast_chat_id=broadcast_chat_id
        )
        self._presence = presence
        self._broadcast_chat_id = broadcast_chat_id
        self._default_tier = default_tier
        self._clock = clock
        self._deleted = DeleteNoticeResolver(state=state, handlers=handlers)

    async def serve(self, events: AsyncIterable[InboundEvent]) -> None:
        """Dispatch every inbound event concurrently until the stream ends."""
        async with anyio.create_task_group() as tg:
            async for inbound in events:
                tg.start_soon(self._dispatch_inbound, inbound)

    async def _dispatch_inbound(self, inbound: InboundEvent) -> None:
        await self.dispatch(inbound.raw, tenant_id=inbound.tenant_id, auth_id=inbound.auth_id)

    async def dispatch(
        self, raw: dict[str, Any], *, tenant_id: str, auth_id: str | None = None
    ) -> DispatchOutcome:
        started = self._clock()
        outcome = DispatchOutcome(tenant_id=tenant_id)
        tokens = dict(bind_dispatch_context(tenant_id=tenant_id))
        try:
            await self._dispatch(raw, tenant_id, auth_id, outcome, tokens)
        except MalformedEvent as exc:
            outcome.dropped = True
            logger.info("dispatch.event.malformed", reason=exc.reason)
        except SecurityBlocked as exc:
            outcome.blocked = True
            logger.info("dispatch.security.blocked", reason=exc.reason)
        except Exception as exc:
            outcome.errors.append(repr(exc))
            logger.exception("dispatch.failed", sender_id=outcome.sender_id)
        finally:
            outcome.elapsed_ms = (self._clock() - started) * 1000.0
            self._record_metrics(tenant_id, auth_id, outcome)
            reset_context(tokens)
        return outcome

    async def _dispatch(
        self,
        raw: dict[str, Any],
        tenant_id: str,
        auth_id: str | None,
        outcome: DispatchOutcome,
        tokens: dict[str, Any],
    ) -> None:
        event = parse_event(
            raw,
            tenant_id=tenant_id,
            own_ids=own_ids(
                getattr(self._transport, "own_id", None),
                getattr(self._transport, "own_lid", None),
            ),
            broadcast_chat_id=self._broadcast_chat_id,
        )
        outcome.chat_id = event.chat_id
        outcome.sender_id = event.sender_id
        tokens.update(
            bind_dispatch_context(chat_id=event.chat_id, sender_id=event.sender_id)
        )
        self._state.tenants.ensure(tenant_id, auth_id)
        self._state.tenants.touch(tenant_id)

        await self._best_effort("presence", outcome, lambda: self._apply_presence(event))
        await self._best_effort(
            "read_receipt", outcome, lambda: self._send_read_receipt(event)
        )

        if event.is_group:
            self._state.append_message(event.chat_id, event)

        tier = await self._resolve_tier(auth_id)
        outcome.tier = tier.value

        await self._check_security(event, tier.value)

        config = await self._settings.config(tenant_id)
        outcome.mode = config.mode
        has_pending = not event.is_group and self._state.has_pending_request(
            event.sender_id
        )
        classification = self._classifier.classify(
            event, prefix=config.prefix, has_pending=has_pending
        )
        if classification.category is Category.PENDING_REPLY:
            self._state.consume_pending_request(event.sender_id)
        outcome.classification = classification
        logger.debug(
            "dispatch.classified",
            category=classification.category.value if classification.category else None,
            command=classification.command,
            kind=event.kind,
        )

        await self._route(event, classification, auth_id, tier.value, outcome)

    async def _route(
        self,
        event: ChatEvent,
        classification: Classification,
        auth_id: str | None,
        tier: str,
        outcome: DispatchOutcome,
    ) -> None:
        category = classification.category
        if classification.discard:
            logger.debug("dispatch.status.own_ignored")
            return
        if category is None:
            logger.debug("dispatch.unrouted", kind=event.kind)
            return

        if category is Category.POLL_VOTE:
            await self._invoke("poll_vote", outcome, lambda: self._handlers.poll_vote(event))
        elif category is Category.STATUS:
            if self._status_batcher is not None:
                self._status_batcher.submit(event.tenant_id, event)
            else:
                await self._invoke(
                    "status", outcome, lambda: self._status_viewer.view(event)
                )
        elif category is Category.MEDIA:
            await self._invoke("media", outcome, lambda: self._handlers.media(event))
        elif category is Category.PENDING_REPLY:
            await self._invoke(
                "pending_reply", outcome, lambda: self._handlers.pending_reply(event)
            )
        elif category is Category.DELETE_NOTICE:
            await self._invoke(
                "delete_notice", outcome, lambda: self._deleted.handle(event)
            )
        elif category is Category.PLAIN:
            self._archive(event)
            if classification.command:
                outcome.command_routed = True
                await self._invoke(
                    "command",
                    outcome,
                    lambda: self._commands.run(
                        event,
                        tenant_id=event.tenant_id,
                        auth_id=auth_id,
                        text=event.text,
                        tier=tier,
                    ),
                )
        if not outcome.errors:
            outcome.handled = category
            logger.info(
                "dispatch.routed", category=category.value, command=outcome.command_routed
            )

    def _archive(self, event: ChatEvent) -> None:
        # group events were already logged on arrival
        if not event.is_group:
            self._state.append_message(event.chat_id, event)
            return
        self._state.increment_activity(
            event.chat_id, event.sender_id, event.display_name, event.message_id
        )

    async def _apply_presence(self, event: ChatEvent) -> None:
        if self._presence is None:
            return
        presence = await self._settings.presence.get(event.tenant_id)
        if presence.value:
            await self._presence.apply(event.tenant_id, event.chat_id, presence.value)

    async def _send_read_receipt(self, event: ChatEvent) -> None:
        if event.from_operator or event.chat_id == self._broadcast_chat_id:
            return
        enabled = await self._settings.read_receipts.get(event.tenant_id)
        if enabled.value:
            await self._transport.mark_read([event.key])

    async def _resolve_tier(self, auth_id: str | None) -> Resolved[str]:
        try:
            tier = await self._tiers.tier(auth_id)
        except Exception as exc:
            logger.warning("dispatch.tier.failed", auth_id=auth_id, error=str(exc))
            return Resolved(self._default_tier, "default", exc)
        if not tier:
            return Resolved(self._default_tier, "default")
        return Resolved(tier, "store")

    async def _check_security(self, event: ChatEvent, tier: str) -> None:
        try:
            verdict = await self._security.check_event(
                tenant_id=event.tenant_id, event=event, tier=tier
            )
        except Exception as exc:
            logger.exception("dispatch.security.failed")
            raise SecurityBlocked(event.tenant_id, f"security check failed: {exc!r}") from exc
        if verdict != "allow":
            raise SecurityBlocked(event.tenant_id)

    async def _best_effort(
        self,
        step: str,
        outcome: DispatchOutcome,
        fn: Callable[[], Awaitable[Any]],
    ) -> None:
        try:
            await fn()
        except Exception as exc:
            outcome.step_failures.append(f"{step}: {exc!r}")
            logger.warning("dispatch.step.failed", step=step, error=repr(exc))

    async def _invoke(
        self,
        handler: str,
        outcome: DispatchOutcome,
        fn: Callable[[], Awaitable[Any]],
    ) -> None:
        try:
            await fn()
        except Exception as exc:
            error = HandlerError(handler, exc)
            outcome.errors.append(str(error))
            logger.exception(
                "dispatch.handler.failed",
                handler=handler,
                sender_id=outcome.sender_id,
            )

    def _record_metrics(
        self, tenant_id: str, auth_id: str | None, outcome: DispatchOutcome
    ) -> None:
        try:
            self._metrics.record(
                tenant_id, auth_id, {"processing_time_ms": outcome.elapsed_ms}
            )
        except Exception as exc:
            logger.warning("dispatch.metrics.failed", error=repr(exc))
