"""
Sticky vouch guide.

Keeps one guide notice near the bottom of each allow-listed chat by deleting
the previous one and posting a fresh copy on a timer.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Set

from config import STICKY_FOOTER, STICKY_MESSAGE, STICKY_TITLE
from vouchbot.models import Notice

logger = logging.getLogger(__name__)


class NoticeStore:
    """chat_id -> message id of the notice currently posted there."""

    def __init__(self):
        self._ids: Dict[int, int] = {}

    def get(self, chat_id: int) -> Optional[int]:
        return self._ids.get(chat_id)

    def put(self, chat_id: int, message_id: int) -> None:
        self._ids[chat_id] = message_id

    def drop(self, chat_id: int) -> None:
        self._ids.pop(chat_id, None)

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._ids


def sticky_notice() -> Notice:
    return Notice(title=STICKY_TITLE, description=STICKY_MESSAGE, tone="info", footer=STICKY_FOOTER)


class StickyNoticeManager:
    def __init__(self, gateway, chat_ids: Iterable[int], store: Optional[NoticeStore] = None):
        self.gateway = gateway
        self.chat_ids = tuple(chat_ids)
        self.store = store or NoticeStore()
        self._active: Set[int] = set()

    def note_activity(self, chat_id: int) -> None:
        """A message arrived in the chat, so the posted notice is no longer the last one."""
        self._active.add(chat_id)

    async def refresh(self, chat_id: int) -> Optional[int]:
        previous = self.store.get(chat_id)
        if previous is not None:
            if not await self.gateway.delete(chat_id, previous):
                logger.info("Could not delete old sticky notice %s in chat %s", previous, chat_id)
            self.store.drop(chat_id)

        message_id = await self.gateway.send(chat_id, sticky_notice())
        if message_id is None:
            logger.warning("Could not post sticky notice in chat %s", chat_id)
            return None
        self.store.put(chat_id, message_id)
        self._active.discard(chat_id)
        return message_id

    async def refresh_all(self) -> int:
        """Refresh every allow-listed chat. Returns how many notices were posted."""
        posted = 0
        for chat_id in self.chat_ids:
            if chat_id in self.store and chat_id not in self._active:
                continue
            try:
                if await self.refresh(chat_id) is not None:
                    posted += 1
            except Exception:
                logger.exception("Sticky refresh failed for chat %s", chat_id)
        return posted
