import pytest

from vouchbot.engine.router import ParsedCommand, mention_id, numeric_id, parse_command


@pytest.mark.parametrize("text", ["!vouch <@5> great", "/vouch <@5> great", "vouch <@5> great", "!VOUCH <@5> great"])
def test_prefixes_and_bare_word(text):
    assert parse_command(text) == ParsedCommand(name="vouch", args=("<@5>", "great"))


def test_bot_suffix_for_this_bot_is_stripped():
    parsed = parse_command("/vouchstats@KoalaVouchBot", bot_username="koalavouchbot")
    assert parsed == ParsedCommand(name="vouchstats")


def test_command_for_another_bot_is_ignored():
    assert parse_command("/vouchstats@OtherBot", bot_username="KoalaVouchBot") is None
    assert parse_command("/vouchstats@OtherBot") is None


def test_only_first_token_is_considered():
    assert parse_command("hello !vouch <@5>") is None
    assert parse_command("please vouch for me") is None


def test_lenient_mode_needs_an_exact_name():
    assert parse_command("vouching is fun") is None
    assert parse_command("vouches") == ParsedCommand(name="vouches")


@pytest.mark.parametrize("text", ["", "   ", "!", "!unknown thing", "/start"])
def test_no_command(text):
    assert parse_command(text) is None


def test_extra_whitespace_is_discarded():
    parsed = parse_command("  !vouchgive   <@5>  3   nice   work ")
    assert parsed.args == ("<@5>", "3", "nice", "work")


def test_mention_and_numeric_tokens():
    assert mention_id("<@123>") == 123
    assert mention_id("<@abc>") is None
    assert mention_id("@alice") is None
    assert numeric_id("123") == 123
    assert numeric_id("12a") is None
    assert numeric_id(None) is None
