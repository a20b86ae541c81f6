from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from telegram import Message, MessageEntity, Update, User
from telegram.constants import ChatMemberStatus
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from vouchbot.handlers.commands import announce_chat_joined
from vouchbot.models import Attachment, ChatUser, InboundMessage
from vouchbot.runtime import SERVICES_KEY
from vouchbot.services.gateway import parse_page_callback

logger = logging.getLogger(__name__)

_JOINED = (ChatMemberStatus.MEMBER, ChatMemberStatus.ADMINISTRATOR)
_OUTSIDE = (ChatMemberStatus.LEFT, ChatMemberStatus.BANNED)


def to_chat_user(user: User) -> ChatUser:
    return ChatUser(
        id=user.id,
        username=user.username,
        display_name=user.full_name or None,
        is_bot=bool(user.is_bot),
    )


def rewrite_mentions(
    text: str,
    entities: Sequence[MessageEntity],
    directory,
) -> Tuple[str, List[ChatUser]]:
    """
    Replace every mention span the bot can resolve with a `<@user_id>` token.

    Entity offsets are counted in UTF-16 code units, so slicing happens on the
    UTF-16 encoding of the text. `@username` mentions nobody has seen yet are
    left as typed.
    """
    encoded = text.encode("utf-16-le")
    pieces: List[str] = []
    mentions: List[ChatUser] = []
    cursor = 0

    for entity in sorted(entities, key=lambda e: e.offset):
        start = entity.offset * 2
        end = (entity.offset + entity.length) * 2
        if start < cursor:
            continue

        user: Optional[ChatUser] = None
        if entity.type == MessageEntity.TEXT_MENTION and entity.user is not None:
            user = to_chat_user(entity.user)
            directory.remember(user)
        elif entity.type == MessageEntity.MENTION:
            user = directory.find_username(encoded[start:end].decode("utf-16-le"))
        if user is None:
            continue

        pieces.append(encoded[cursor:start].decode("utf-16-le"))
        pieces.append(f" <@{user.id}> ")
        mentions.append(user)
        cursor = end

    pieces.append(encoded[cursor:].decode("utf-16-le"))
    return "".join(pieces), mentions


def collect_attachments(message: Message) -> List[Attachment]:
    attachments = []
    if message.photo:
        # Telegram sends several sizes; the last one is the largest
        attachments.append(Attachment(file_id=message.photo[-1].file_id, kind="photo", mime_type="image/jpeg"))
    if message.document is not None:
        attachments.append(
            Attachment(
                file_id=message.document.file_id,
                kind="document",
                mime_type=message.document.mime_type,
            )
        )
    return attachments


def to_inbound(message: Message, author: User, directory) -> Optional[InboundMessage]:
    """Map a Telegram message to an InboundMessage, or None if it carries no text."""
    if message.text is not None:
        text, entities = message.text, message.entities
    elif message.caption is not None:
        text, entities = message.caption, message.caption_entities
    else:
        return None

    text, mentions = rewrite_mentions(text, entities or (), directory)
    return InboundMessage(
        message_id=message.message_id,
        chat_id=message.chat_id,
        author=to_chat_user(author),
        text=text,
        mentions=mentions,
        attachments=collect_attachments(message),
    )


async def handle_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Entry point for every text or captioned message."""
    services = context.bot_data[SERVICES_KEY]
    message = update.effective_message
    if message is None or update.effective_user is None:
        return

    inbound = to_inbound(message, update.effective_user, services.directory)
    if inbound is None:
        return
    services.directory.remember(inbound.author)

    outcome = await services.router.route(inbound)
    logger.debug(f"Message {inbound.chat_id}/{inbound.message_id} from {inbound.author.id}: {outcome}")


async def handle_page_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Previous/next button presses on paged results."""
    services = context.bot_data[SERVICES_KEY]
    query = update.callback_query
    if query is None:
        return

    try:
        await query.answer()
    except TelegramError as e:
        logger.debug(f"Could not answer callback query: {e}")

    parsed = parse_page_callback(query.data)
    if parsed is None:
        return
    view_id, signal = parsed
    if signal == "noop":
        return

    services.directory.remember(to_chat_user(query.from_user))
    await services.pagination.handle_signal(view_id, query.from_user.id, signal)


async def handle_my_chat_member(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """The bot's own membership changed in some chat."""
    services = context.bot_data[SERVICES_KEY]
    change = update.my_chat_member
    if change is None:
        return

    chat = change.chat
    services.gateway.forget_permissions(chat.id)

    old_status = change.old_chat_member.status
    new_status = change.new_chat_member.status
    if new_status in _JOINED and old_status in _OUTSIDE:
        await announce_chat_joined(services, chat.id, chat.title)
    elif new_status in _OUTSIDE:
        logger.info(f"Bot removed from chat {chat.id} ({chat.title})")
