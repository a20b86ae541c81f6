"""
User directory.

Telegram bots cannot look a user up by @username, so every user the bot sees
(authors, mentioned users, button presses) is remembered in the store. Lookups
by numeric id try that table first and then ask Telegram.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import vouch_db
from vouchbot.errors import PersistenceError
from vouchbot.models import ChatUser, ResolvedUser, UnknownUser, UserRef

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, gateway):
        self.gateway = gateway
        self._cache: Dict[int, ChatUser] = {}

    def remember(self, user: ChatUser) -> None:
        if user.is_bot:
            return
        cached = self._cache.get(user.id)
        if cached == user:
            return
        self._cache[user.id] = user
        vouch_db.remember_user(user)

    def find_username(self, username: str) -> Optional[ChatUser]:
        norm = username.lstrip("@").lower()
        for user in self._cache.values():
            if user.username and user.username.lower() == norm:
                return user
        try:
            return vouch_db.find_known_user_by_username(norm)
        except PersistenceError:
            return None

    async def lookup(self, user_id: int) -> UserRef:
        """Resolve an id to a user. Never raises; unknown ids give UnknownUser."""
        user = self._cache.get(user_id)
        if user is None:
            try:
                user = vouch_db.get_known_user(user_id)
            except PersistenceError:
                user = None
        if user is None:
            user = await self.gateway.fetch_user(user_id)
            if user is not None:
                self.remember(user)
        if user is None:
            logger.debug("User %s is not known to the directory", user_id)
            return UnknownUser(user_id)
        self._cache[user_id] = user
        return ResolvedUser(user)

    async def label(self, user_id: int) -> str:
        return (await self.lookup(user_id)).label
