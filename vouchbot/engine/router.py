from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from config import COMMAND_PREFIXES, GENERIC_ERROR_MESSAGE, PRIVILEGED_COMMANDS, PUBLIC_COMMANDS
from vouchbot.errors import CooldownActiveError, PermissionDeniedError, PersistenceError, UserInputError
from vouchbot.models import InboundMessage, Notice

logger = logging.getLogger(__name__)

ALL_COMMANDS = frozenset(PUBLIC_COMMANDS) | frozenset(PRIVILEGED_COMMANDS)

MENTION_TOKEN = re.compile(r"^<@(\d+)>$")
NUMERIC_ID = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: Tuple[str, ...] = ()


def parse_command(text: Optional[str], bot_username: Optional[str] = None) -> Optional[ParsedCommand]:
    """
    Find the command in a message, or return None.

    Only the first whitespace-delimited token is looked at. It may carry a
    `!` or `/` prefix and, for slash commands, an `@BotName` suffix that must
    name this bot. A bare first word counts too when it is exactly a command
    name.
    """
    tokens = (text or "").split()
    if not tokens:
        return None

    head = tokens[0]
    if head[:1] in COMMAND_PREFIXES:
        head = head[1:]
        name, _, addressee = head.partition("@")
        if addressee:
            if not bot_username or addressee.lower() != bot_username.lstrip("@").lower():
                return None
    else:
        name = head

    name = name.lower()
    if name not in ALL_COMMANDS:
        return None
    return ParsedCommand(name=name, args=tuple(tokens[1:]))


def mention_id(token: Optional[str]) -> Optional[int]:
    """User id from a `<@123>` token."""
    if not token:
        return None
    match = MENTION_TOKEN.match(token)
    return int(match.group(1)) if match else None


def numeric_id(token: Optional[str]) -> Optional[int]:
    if token and NUMERIC_ID.match(token):
        return int(token)
    return None


@dataclass
class CommandContext:
    message: InboundMessage
    command: ParsedCommand
    privileged: bool

    @property
    def args(self) -> Tuple[str, ...]:
        return self.command.args

    @property
    def author_id(self) -> int:
        return self.message.author.id


CommandHandler = Callable[[CommandContext], Awaitable[None]]

# Outcomes returned by CommandRouter.route
IGNORED = "ignored"
NOT_A_COMMAND = "not_a_command"
DENIED = "denied"
THROTTLED = "throttled"
HANDLED = "handled"
REJECTED = "rejected"
FAILED = "failed"


def error_notice(error: UserInputError) -> Notice:
    return Notice(title=error.title, description=error.description, tone="error")


def generic_error_notice() -> Notice:
    return Notice(title="Error", description=GENERIC_ERROR_MESSAGE, tone="error")


class CommandRouter:
    def __init__(
        self,
        settings,
        gateway,
        cooldowns,
        handlers: Dict[str, CommandHandler],
        sticky=None,
        bot_username: Optional[str] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.cooldowns = cooldowns
        self.handlers = handlers
        self.sticky = sticky
        self.bot_username = bot_username

    async def route(self, message: InboundMessage) -> str:
        if message.author.is_bot:
            return IGNORED

        allowed_chat = self.settings.is_allowed_channel(message.chat_id)
        if allowed_chat and self.sticky is not None:
            self.sticky.note_activity(message.chat_id)

        command = parse_command(message.text, self.bot_username)
        if command is None:
            return NOT_A_COMMAND

        privileged = self.settings.is_privileged(message.author.id)
        if not allowed_chat and not privileged:
            logger.debug(f"Ignoring !{command.name} from {message.author.id} in chat {message.chat_id}")
            return IGNORED

        if command.name in PRIVILEGED_COMMANDS and not privileged:
            logger.info(f"Denied !{command.name} to non-owner {message.author.id}")
            await self._reject(message, PermissionDeniedError())
            return DENIED

        if not privileged:
            remaining = self.cooldowns.check_and_arm(
                message.author.id, command.name, self.settings.command_cooldown_seconds
            )
            if remaining is not None:
                await self._reject(message, CooldownActiveError(remaining))
                return THROTTLED

        handler = self.handlers.get(command.name)
        if handler is None:
            logger.warning(f"No handler registered for !{command.name}")
            return NOT_A_COMMAND

        ctx = CommandContext(message=message, command=command, privileged=privileged)
        try:
            await handler(ctx)
        except UserInputError as e:
            await self._reject(message, e)
            return REJECTED
        except PersistenceError as e:
            logger.error(f"Store error in !{command.name}: {e}")
            await self._fail(message)
            return FAILED
        except Exception:
            logger.exception(f"Unhandled error in !{command.name}")
            await self._fail(message)
            return FAILED
        return HANDLED

    async def _reject(self, message: InboundMessage, error: UserInputError) -> None:
        await self.gateway.reply(message, error_notice(error))
        await self.gateway.react(message, success=False)

    async def _fail(self, message: InboundMessage) -> None:
        await self.gateway.reply(message, generic_error_notice())
        await self.gateway.react(message, success=False)
