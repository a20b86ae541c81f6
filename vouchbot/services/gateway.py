"""
Messaging gateway.

Wraps the Telegram Bot API calls the bot makes. Sends check that the bot may
post in the chat first, and failures are logged and returned as None/False.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    LinkPreviewOptions,
    ReplyParameters,
)
from telegram.constants import ChatMemberStatus, ParseMode
from telegram.error import TelegramError

from vouchbot.formatting import render_notice
from vouchbot.models import ChatUser, InboundMessage, Notice, PageControls
from vouchbot.services.assets import validate_thumbnail_url

logger = logging.getLogger(__name__)

SUCCESS_REACTION = "👌"
FAILURE_REACTION = "👎"

MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024

PAGE_CALLBACK_PREFIX = "page"


def page_callback_data(view_id: str, signal: str) -> str:
    return f"{PAGE_CALLBACK_PREFIX}:{view_id}:{signal}"


def parse_page_callback(data: Optional[str]) -> Optional[Tuple[str, str]]:
    """Return (view_id, signal) for pagination callback data, else None."""
    if not data:
        return None
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != PAGE_CALLBACK_PREFIX:
        return None
    return parts[1], parts[2]


def build_page_keyboard(controls: Optional[PageControls]) -> Optional[InlineKeyboardMarkup]:
    if controls is None:
        return None
    # Telegram has no disabled buttons: a disabled control is a no-op button
    prev_button = InlineKeyboardButton(
        "· Previous ·" if controls.prev_disabled else "⬅️ Previous",
        callback_data=page_callback_data(controls.view_id, "noop" if controls.prev_disabled else "prev"),
    )
    next_button = InlineKeyboardButton(
        "· Next ·" if controls.next_disabled else "Next ➡️",
        callback_data=page_callback_data(controls.view_id, "noop" if controls.next_disabled else "next"),
    )
    return InlineKeyboardMarkup([[prev_button, next_button]])


class MessagingGateway:
    def __init__(
        self,
        bot,
        thumbnail_url: Optional[str] = None,
        permission_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bot = bot
        self.thumbnail_url = validate_thumbnail_url(thumbnail_url)
        self._permission_ttl = permission_ttl
        self._clock = clock
        self._permission_cache: Dict[int, Tuple[bool, float]] = {}

    # ------------------------------------------------------------------
    # Permission pre-checks
    # ------------------------------------------------------------------

    async def can_send(self, chat_id: int) -> bool:
        if chat_id > 0:
            # Private chats: the user started the conversation with the bot
            return True

        cached = self._permission_cache.get(chat_id)
        now = self._clock()
        if cached and now - cached[1] < self._permission_ttl:
            return cached[0]

        try:
            member = await self.bot.get_chat_member(chat_id, self.bot.id)
        except TelegramError as e:
            logger.warning("Permission check failed for chat %s: %s", chat_id, e)
            return False

        allowed = _member_can_send(member)
        self._permission_cache[chat_id] = (allowed, now)
        if not allowed:
            logger.info("Bot lacks permission to post in chat %s (status=%s)", chat_id, member.status)
        return allowed

    def forget_permissions(self, chat_id: int) -> None:
        self._permission_cache.pop(chat_id, None)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _preview_options(self, notice: Notice) -> LinkPreviewOptions:
        image = validate_thumbnail_url(notice.image_url) or self.thumbnail_url
        if not image:
            return LinkPreviewOptions(is_disabled=True)
        return LinkPreviewOptions(url=image, prefer_small_media=not notice.image_url)

    async def send(
        self,
        chat_id: Optional[int],
        notice: Notice,
        controls: Optional[PageControls] = None,
    ) -> Optional[int]:
        """Send a notice to a chat. Returns the new message id or None."""
        if chat_id is None:
            return None
        if not await self.can_send(chat_id):
            return None
        try:
            sent = await self.bot.send_message(
                chat_id=chat_id,
                text=render_notice(notice, MAX_TEXT_LENGTH),
                parse_mode=ParseMode.HTML,
                reply_markup=build_page_keyboard(controls),
                link_preview_options=self._preview_options(notice),
            )
        except TelegramError as e:
            logger.error("Send to chat %s failed: %s", chat_id, e)
            return None
        return sent.message_id

    async def reply(
        self,
        message: InboundMessage,
        notice: Notice,
        controls: Optional[PageControls] = None,
    ) -> Optional[int]:
        """Reply to a message, falling back to a plain send if the reply fails."""
        if not await self.can_send(message.chat_id):
            return None
        try:
            sent = await self.bot.send_message(
                chat_id=message.chat_id,
                text=render_notice(notice, MAX_TEXT_LENGTH),
                parse_mode=ParseMode.HTML,
                reply_markup=build_page_keyboard(controls),
                link_preview_options=self._preview_options(notice),
                reply_parameters=ReplyParameters(
                    message_id=message.message_id,
                    allow_sending_without_reply=True,
                ),
            )
        except TelegramError as e:
            logger.warning("Reply in chat %s failed, sending instead: %s", message.chat_id, e)
            return await self.send(message.chat_id, notice, controls)
        return sent.message_id

    async def send_photo(self, chat_id: Optional[int], file_id: str, notice: Notice) -> Optional[int]:
        """Send an image (by Telegram file id) with the notice as caption."""
        if chat_id is None:
            return None
        if not await self.can_send(chat_id):
            return None
        try:
            sent = await self.bot.send_photo(
                chat_id=chat_id,
                photo=file_id,
                caption=render_notice(notice, MAX_CAPTION_LENGTH),
                parse_mode=ParseMode.HTML,
            )
        except TelegramError as e:
            logger.warning("Photo send to chat %s failed, sending text only: %s", chat_id, e)
            return await self.send(chat_id, notice)
        return sent.message_id

    async def react(self, message: InboundMessage, success: bool) -> bool:
        emoji = SUCCESS_REACTION if success else FAILURE_REACTION
        try:
            await self.bot.set_message_reaction(
                chat_id=message.chat_id,
                message_id=message.message_id,
                reaction=emoji,
            )
        except TelegramError as e:
            logger.debug("Reaction on %s/%s failed: %s", message.chat_id, message.message_id, e)
            return False
        return True

    async def edit(
        self,
        chat_id: int,
        message_id: int,
        notice: Notice,
        controls: Optional[PageControls] = None,
    ) -> bool:
        try:
            await self.bot.edit_message_text(
                text=render_notice(notice, MAX_TEXT_LENGTH),
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=ParseMode.HTML,
                reply_markup=build_page_keyboard(controls),
                link_preview_options=self._preview_options(notice),
            )
        except TelegramError as e:
            logger.warning("Edit of %s/%s failed: %s", chat_id, message_id, e)
            return False
        return True

    async def delete(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except TelegramError as e:
            logger.debug("Delete of %s/%s failed: %s", chat_id, message_id, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Directory and chat lookups
    # ------------------------------------------------------------------

    async def fetch_user(self, user_id: int) -> Optional[ChatUser]:
        try:
            chat = await self.bot.get_chat(user_id)
        except TelegramError as e:
            logger.debug("User lookup for %s failed: %s", user_id, e)
            return None
        if getattr(chat, "type", None) != "private":
            return None
        name = " ".join(p for p in (chat.first_name, chat.last_name) if p) or None
        return ChatUser(id=chat.id, username=chat.username, display_name=name)

    async def create_invite(self, chat_id: int) -> Optional[str]:
        """Single-use invite valid for 24 hours."""
        try:
            link = await self.bot.create_chat_invite_link(
                chat_id=chat_id,
                expire_date=datetime.now(timezone.utc) + timedelta(days=1),
                member_limit=1,
            )
        except TelegramError as e:
            logger.error("Invite creation for chat %s failed: %s", chat_id, e)
            return None
        return link.invite_link

    async def member_count(self, chat_id: int) -> Optional[int]:
        try:
            return await self.bot.get_chat_member_count(chat_id)
        except TelegramError as e:
            logger.debug("Member count for chat %s failed: %s", chat_id, e)
            return None


def _member_can_send(member) -> bool:
    status = member.status
    if status in (ChatMemberStatus.OWNER, ChatMemberStatus.MEMBER):
        return True
    if status == ChatMemberStatus.ADMINISTRATOR:
        # Channel admins need the explicit post right; group admins always can
        can_post = getattr(member, "can_post_messages", None)
        return can_post is None or bool(can_post)
    if status == ChatMemberStatus.RESTRICTED:
        return bool(getattr(member, "can_send_messages", False))
    return False
