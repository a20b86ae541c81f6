import itertools
import os
import sys
from contextlib import closing

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import vouch_db
from config import Settings
from vouchbot.models import Attachment, ChatUser, InboundMessage
from vouchbot.runtime import build_services

OWNER_ID = 1000
ALLOWED_CHAT = -100123
LOG_CHAT = -100900
NOTIFY_CHAT = -100901


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeGateway:
    """Records every outbound call instead of talking to Telegram."""

    def __init__(self, thumbnail_url=None, known_users=None, blocked_chats=()):
        self.thumbnail_url = thumbnail_url
        self.known_users = dict(known_users or {})
        self.blocked_chats = set(blocked_chats)
        self.sent = []
        self.replies = []
        self.photos = []
        self.reactions = []
        self.edits = []
        self.deleted = []
        self.failing_deletes = set()
        self._ids = itertools.count(500)

    async def can_send(self, chat_id):
        return chat_id not in self.blocked_chats

    def forget_permissions(self, chat_id):
        pass

    async def send(self, chat_id, notice, controls=None):
        if chat_id is None or chat_id in self.blocked_chats:
            return None
        message_id = next(self._ids)
        self.sent.append((chat_id, notice, controls, message_id))
        return message_id

    async def reply(self, message, notice, controls=None):
        message_id = next(self._ids)
        self.replies.append((message, notice, controls, message_id))
        return message_id

    async def send_photo(self, chat_id, file_id, notice):
        if chat_id is None:
            return None
        message_id = next(self._ids)
        self.photos.append((chat_id, file_id, notice))
        return message_id

    async def react(self, message, success):
        self.reactions.append((message.message_id, success))
        return True

    async def edit(self, chat_id, message_id, notice, controls=None):
        self.edits.append((chat_id, message_id, notice, controls))
        return True

    async def delete(self, chat_id, message_id):
        if message_id in self.failing_deletes:
            return False
        self.deleted.append((chat_id, message_id))
        return True

    async def fetch_user(self, user_id):
        return self.known_users.get(user_id)

    async def create_invite(self, chat_id):
        return f"https://t.me/+invite{abs(chat_id)}"

    async def member_count(self, chat_id):
        return 42

    # Helpers for assertions
    @property
    def last_reply(self):
        return self.replies[-1][1] if self.replies else None

    @property
    def last_reaction(self):
        return self.reactions[-1][1] if self.reactions else None


_message_ids = itertools.count(1)


def make_user(user_id, username=None, name=None, is_bot=False):
    return ChatUser(id=user_id, username=username, display_name=name or f"User {user_id}", is_bot=is_bot)


def make_message(text, author, chat_id=ALLOWED_CHAT, mentions=(), photo=False):
    attachments = [Attachment(file_id=f"photo-{author.id}", kind="photo", mime_type="image/jpeg")] if photo else []
    return InboundMessage(
        message_id=next(_message_ids),
        chat_id=chat_id,
        author=author,
        text=text,
        mentions=list(mentions),
        attachments=attachments,
    )


def make_settings(**overrides):
    values = dict(
        bot_token="123:abc",
        allowed_channel_ids=frozenset({ALLOWED_CHAT}),
        owner_ids=frozenset({OWNER_ID}),
        log_channel_id=LOG_CHAT,
        notification_channel_id=NOTIFY_CHAT,
        vouch_cooldown_seconds=86400,
        command_cooldown_seconds=2,
    )
    values.update(overrides)
    return Settings(**values)


def stored_vouch(vouch_id):
    """Read a vouch row straight from the store, deleted or not."""
    with closing(vouch_db.get_db_connection()) as conn:
        row = conn.execute(
            f"SELECT {vouch_db._VOUCH_COLUMNS} FROM vouches WHERE vouch_id = ?", (vouch_id,)
        ).fetchone()
    return vouch_db._row_to_record(row) if row else None


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    # Point DB to a temp file for isolation
    db_file = tmp_path / "vouches_test.db"
    monkeypatch.setattr(vouch_db, "DB_PATH", str(db_file))
    vouch_db.init_db()
    return db_file


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def services(temp_db, gateway):
    # Command throttling is covered in test_router; keep it out of the way here
    svc = build_services(
        make_settings(command_cooldown_seconds=0), bot=None, bot_username="KoalaVouchBot", gateway=gateway
    )
    yield svc
    await svc.commands.drain()
    await svc.pagination.close()
