from __future__ import annotations

from dataclasses import replace

from ..cache import TenantSettings
from ..ids import user_jid
from ..logging import get_logger
from ..model import ChatEvent, MessageKey
from ..ports import Transport

logger = get_logger(__name__)


class StatusViewer:
    """Marks peers' status posts as seen and reacts to them.

    Both actions only happen while the tenant's ``status_seen`` toggle is on.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        settings: TenantSettings,
        reaction: str = "❤️",
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._reaction = reaction

    def _recipients(self, participant: str) -> list[str]:
        recipients = [participant]
        own = getattr(self._transport, "own_id", None)
        if own:
            recipients.append(own if "@" in own else user_jid(own))
        return recipients

    async def enabled(self, tenant_id: str) -> bool:
        resolved = await self._settings.status_seen.get(tenant_id)
        return bool(resolved.value)

    async def _view_key(self, key: MessageKey) -> None:
        participant = key.participant or key.chat_id
        key = replace(key, participant=participant)
        await self._transport.mark_read([key])
        await self._transport.send_reaction(
            key, self._reaction, self._recipients(participant)
        )

    async def view(self, event: ChatEvent) -> bool:
        if not await self.enabled(event.tenant_id):
            return False
        logger.info("status.view", sender_id=event.sender_id)
        await self._view_key(event.key)
        return True

    async def view_unseen(self, tenant_id: str) -> int:
        if not await self.enabled(tenant_id):
            logger.info("status.unseen.disabled", tenant_id=tenant_id)
            return 0
        try:
            items = await self._transport.fetch_statuses()
        except Exception:
            logger.exception("status.unseen.fetch_failed", tenant_id=tenant_id)
            return 0
        if not items:
            logger.info("status.unseen.none", tenant_id=tenant_id)
            return 0
        viewed = 0
        for item in items:
            key = MessageKey(
                chat_id=item.chat_id,
                message_id=item.message_id,
                from_me=False,
                participant=item.chat_id,
            )
            try:
                await self._view_key(key)
            except Exception:
                logger.exception(
                    "status.unseen.failed",
                    tenant_id=tenant_id,
                    chat_id=item.chat_id,
                    message_id=item.message_id,
                )
                continue
            viewed += 1
        logger.info("status.unseen.done", tenant_id=tenant_id, viewed=viewed)
        return viewed
