import pytest

from conftest import ALLOWED_CHAT, OWNER_ID, FakeClock, make_message, make_settings, make_user

from vouchbot.engine import router as router_module
from vouchbot.engine.router import CommandRouter
from vouchbot.errors import PersistenceError, UsageError
from vouchbot.services.cooldowns import CooldownTracker, ExpiringStore

MEMBER = make_user(2001, "member")
OWNER = make_user(OWNER_ID, "owner")


class RecordingSticky:
    def __init__(self):
        self.activity = []

    def note_activity(self, chat_id):
        self.activity.append(chat_id)


def build_router(services, handlers=None, clock=None):
    calls = []

    async def record(ctx):
        calls.append(ctx)

    table = handlers or {name: record for name in router_module.ALL_COMMANDS}
    sticky = RecordingSticky()
    cooldowns = CooldownTracker(ExpiringStore(clock=clock or FakeClock()))
    router = CommandRouter(
        settings=make_settings(),
        gateway=services.gateway,
        cooldowns=cooldowns,
        handlers=table,
        sticky=sticky,
        bot_username="KoalaVouchBot",
    )
    return router, calls, sticky


@pytest.mark.asyncio
async def test_bot_authors_are_ignored(services):
    router, calls, sticky = build_router(services)
    bot_user = make_user(9, "somebot", is_bot=True)
    outcome = await router.route(make_message("!vouchstats", bot_user))
    assert outcome == router_module.IGNORED
    assert calls == []
    assert sticky.activity == []


@pytest.mark.asyncio
async def test_activity_is_noted_even_without_a_command(services):
    router, calls, sticky = build_router(services)
    outcome = await router.route(make_message("just chatting", MEMBER))
    assert outcome == router_module.NOT_A_COMMAND
    assert sticky.activity == [ALLOWED_CHAT]


@pytest.mark.asyncio
async def test_non_allowed_chat_is_silent_for_members(services):
    router, calls, sticky = build_router(services)
    outcome = await router.route(make_message("!vouchstats", MEMBER, chat_id=-555))
    assert outcome == router_module.IGNORED
    assert services.gateway.replies == []
    assert sticky.activity == []


@pytest.mark.asyncio
async def test_owner_can_use_commands_anywhere(services):
    router, calls, _ = build_router(services)
    outcome = await router.route(make_message("!vouchstats", OWNER, chat_id=-555))
    assert outcome == router_module.HANDLED
    assert calls[0].privileged is True


@pytest.mark.asyncio
async def test_privileged_command_denied_for_member(services):
    router, calls, _ = build_router(services)
    outcome = await router.route(make_message("!vouchremove <@5>", MEMBER))
    assert outcome == router_module.DENIED
    assert calls == []
    assert services.gateway.last_reply.title == "Permission Error"
    assert services.gateway.last_reaction is False


@pytest.mark.asyncio
async def test_command_cooldown_for_members(services):
    clock = FakeClock()
    router, calls, _ = build_router(services, clock=clock)

    assert await router.route(make_message("!vouchstats", MEMBER)) == router_module.HANDLED
    assert await router.route(make_message("!vouchstats", MEMBER)) == router_module.THROTTLED
    assert "2 seconds" in services.gateway.last_reply.description
    assert services.gateway.last_reaction is False

    # A different command is not throttled
    assert await router.route(make_message("!help", MEMBER)) == router_module.HANDLED

    clock.advance(2)
    assert await router.route(make_message("!vouchstats", MEMBER)) == router_module.HANDLED
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_owners_skip_command_cooldown(services):
    router, calls, _ = build_router(services)
    for _ in range(3):
        assert await router.route(make_message("!vouchstats", OWNER)) == router_module.HANDLED
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_user_input_errors_become_replies(services):
    async def bad_input(ctx):
        raise UsageError("Usage: !vouches [@user|userID]")

    router, _, _ = build_router(services, handlers={"vouches": bad_input})
    outcome = await router.route(make_message("!vouches foo", MEMBER))
    assert outcome == router_module.REJECTED
    assert services.gateway.last_reply.title == "Usage Error"
    assert services.gateway.last_reaction is False


@pytest.mark.asyncio
async def test_store_errors_get_generic_reply(services):
    async def broken_store(ctx):
        raise PersistenceError("disk I/O error")

    async def crash(ctx):
        raise RuntimeError("boom")

    router, _, _ = build_router(services, handlers={"vouches": broken_store, "help": crash})

    assert await router.route(make_message("!vouches", MEMBER)) == router_module.FAILED
    assert "try again later" in services.gateway.last_reply.description

    assert await router.route(make_message("!help", MEMBER)) == router_module.FAILED
    assert "try again later" in services.gateway.last_reply.description

    # Still routing afterwards
    assert await router.route(make_message("hello", MEMBER)) == router_module.NOT_A_COMMAND
