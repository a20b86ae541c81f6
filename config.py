"""
Configuration for the Telegram Vouch Bot.

Values come from the environment (a local `.env` file is loaded first).
Message templates live here so copy changes never touch handler code.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Command names
PUBLIC_COMMANDS = (
    "vouch",
    "vouches",
    "vouchhistory",
    "vouchleaderboard",
    "vouchstats",
    "help",
    "koala",
)
PRIVILEGED_COMMANDS = (
    "vouchgive",
    "vouchremove",
    "vouchtransfer",
    "vouchsearch",
    "restorevouches",
)
COMMAND_PREFIXES = ("!", "/")

# Ledger limits
MAX_COMMENT_LENGTH = 500
DEFAULT_COMMENT = "No comment provided"
MIN_POINTS = 0
MAX_POINTS = 50000
BULK_MIN_COUNT = 1
BULK_MAX_COUNT = 1000
SUMMARY_COMMENT_PREVIEW = 50

# Paging
HISTORY_PAGE_SIZE = 5
SEARCH_PAGE_SIZE = 5
LEADERBOARD_PAGE_SIZE = 10
LEADERBOARD_LIMIT = 50

# Thumbnail image extensions accepted by the asset validator
THUMBNAIL_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")

BOT_VERSION = "2.0.0"

# Messages
STICKY_TITLE = "📜 Vouch Guide"
STICKY_MESSAGE = (
    "To vouch for someone, use this format:\n"
    "!vouch @user [message] (Proof/Screenshot Required)\n"
    "- @user: Mention the user you're vouching for\n"
    "- [message]: Optional comment (max 500 chars)\n"
    "- Attach a screenshot/proof\n"
    "Example: !vouch @Koala Trusted and fast. (with screenshot)"
)
STICKY_FOOTER = "Koala Vouch Bot"

VOUCH_GUIDE_MESSAGE = (
    "How to use !vouch:\n"
    "- Syntax: !vouch <@user|userID> [message]\n"
    "- <@user|userID>: Mention or ID of user\n"
    "- [message]: Optional comment (max 500 chars)\n"
    "- Attach a screenshot/proof\n"
    "Example: !vouch @Koala Trusted and fast.\n\n"
    "Reference: {reference}"
)

HELP_VOUCH_COMMANDS = (
    "!vouch <@user|userID> [message] - Give someone a vouch\n"
    "!vouches [@user|userID] - Check someone's vouches\n"
    "!vouchhistory <@user|userID> [page] - See full vouch history\n"
    "!vouchleaderboard [page] - Top vouched users\n"
    "!vouchstats - Vouch statistics"
)
HELP_ADMIN_COMMANDS = (
    "!vouchgive <@user|userID> count message - Give multiple vouches\n"
    "!vouchremove <@user|userID> - Remove vouches\n"
    "!restorevouches <@user|userID> - Restore removed vouches\n"
    "!vouchtransfer <@from> <@to> - Transfer vouches\n"
    "!vouchsearch [@user] keyword [page] - Search vouch comments"
)
HELP_OTHER_COMMANDS = (
    "!koala - Show bot info\n"
    "!help - Display this help message"
)

ABOUT_TITLE = "Koala Bot"
ABOUT_MESSAGE = "The friendliest vouch bot on Telegram!"
ABOUT_FOOTER = "No scammers allowed."

GENERIC_ERROR_MESSAGE = "An error occurred. Please try again later or contact the bot owner."

THANKS_FOOTER = "Thank you for using Koala Vouch Bot!"
HELP_TITLE = "Koala Bot Help"
HELP_FOOTER = "Need more help? Contact the bot owner"
VOUCH_GUIDE_TITLE = "Vouch Command Guide"
EXPIRED_PAGE_NOTE = "Interaction timed out"

DEFAULT_DATABASE_URL = "vouches.db"


def _parse_id_list(raw: Optional[str]) -> FrozenSet[int]:
    if not raw:
        return frozenset()
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            raise ValueError(f"Invalid chat/user id in list: {part!r}")
    return frozenset(ids)


def _parse_optional_id(raw: Optional[str]) -> Optional[int]:
    if not raw or not raw.strip():
        return None
    return int(raw.strip())


def _parse_positive_int(raw: Optional[str], default: int, name: str) -> int:
    if raw is None or not raw.strip():
        return default
    value = int(raw)
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass(frozen=True)
class Settings:
    bot_token: str = ""
    database_url: str = DEFAULT_DATABASE_URL
    notification_channel_id: Optional[int] = None
    log_channel_id: Optional[int] = None
    allowed_channel_ids: FrozenSet[int] = field(default_factory=frozenset)
    owner_ids: FrozenSet[int] = field(default_factory=frozenset)
    vouch_cooldown_seconds: int = 86400
    command_cooldown_seconds: int = 2
    thumbnail_url: Optional[str] = None
    sticky_refresh_seconds: int = 300
    pagination_timeout_seconds: int = 120
    webhook_url: Optional[str] = None
    port: int = 5000
    log_level: str = "INFO"

    def is_privileged(self, user_id: int) -> bool:
        return user_id in self.owner_ids

    def is_allowed_channel(self, chat_id: int) -> bool:
        return chat_id in self.allowed_channel_ids


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment. Raises ValueError on malformed values."""
    env = os.environ if env is None else env
    return Settings(
        bot_token=env.get("BOT_TOKEN", ""),
        database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
        notification_channel_id=_parse_optional_id(env.get("NOTIFICATION_CHANNEL_ID")),
        log_channel_id=_parse_optional_id(env.get("LOG_CHANNEL_ID")),
        allowed_channel_ids=_parse_id_list(env.get("ALLOWED_CHANNEL_IDS")),
        owner_ids=_parse_id_list(env.get("OWNER_IDS")),
        vouch_cooldown_seconds=_parse_positive_int(
            env.get("VOUCH_COOLDOWN_SECONDS"), 86400, "VOUCH_COOLDOWN_SECONDS"
        ),
        command_cooldown_seconds=_parse_positive_int(
            env.get("COMMAND_COOLDOWN_SECONDS"), 2, "COMMAND_COOLDOWN_SECONDS"
        ),
        thumbnail_url=env.get("THUMBNAIL_URL") or None,
        sticky_refresh_seconds=_parse_positive_int(
            env.get("STICKY_REFRESH_SECONDS"), 300, "STICKY_REFRESH_SECONDS"
        ),
        pagination_timeout_seconds=_parse_positive_int(
            env.get("PAGINATION_TIMEOUT_SECONDS"), 120, "PAGINATION_TIMEOUT_SECONDS"
        ),
        webhook_url=env.get("WEBHOOK_URL") or None,
        port=_parse_positive_int(env.get("PORT"), 5000, "PORT"),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def get_final_webhook_url(settings: Settings) -> str:
    """Return the full webhook url with the token path appended.

    Telegram posts updates to `<WEBHOOK_URL>/<token>`; the listener in
    `bot.py` serves the same path.
    """
    base = (settings.webhook_url or "").rstrip("/")
    token = settings.bot_token
    if not base:
        raise ValueError("WEBHOOK_URL is not set")
    if not base.startswith("https://"):
        raise ValueError("WEBHOOK_URL must start with https://")
    if token and base.endswith(token):
        return base
    return f"{base}/{token}"
