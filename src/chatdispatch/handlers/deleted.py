from __future__ import annotations

from ..logging import get_logger
from ..model import ChatEvent
from ..ports import Handlers
from ..session import SessionStateStore

logger = get_logger(__name__)


class DeleteNoticeResolver:
    def __init__(self, *, state: SessionStateStore, handlers: Handlers) -> None:
        self._state = state
        self._handlers = handlers

    def resolve(self, notice: ChatEvent) -> ChatEvent | None:
        if not notice.revoked_id:
            return None
        return self._state.find_message(notice.chat_id, notice.revoked_id)

    async def handle(self, notice: ChatEvent) -> ChatEvent | None:
        original = self.resolve(notice)
        if original is None:
            logger.info("delete_notice.unresolved", revoked_id=notice.revoked_id)
        await self._handlers.delete_notice(notice, original)
        return original
