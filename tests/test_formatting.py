import re
from datetime import datetime, timedelta, timezone

from vouchbot.formatting import format_relative, format_timestamp, render_notice, truncate
from vouchbot.models import Notice

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_truncate():
    assert truncate("short", 50) == "short"
    assert truncate("x" * 60, 50) == "x" * 50 + "..."


def test_relative_times():
    assert format_relative(NOW - timedelta(seconds=30), NOW) == "just now"
    assert format_relative(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert format_relative(NOW - timedelta(hours=5), NOW) == "5 hours ago"
    assert format_relative(NOW - timedelta(days=3, hours=2), NOW) == "3 days ago"
    # Clock skew never renders a future time
    assert format_relative(NOW + timedelta(minutes=5), NOW) == "just now"


def test_absolute_time_is_utc():
    assert format_timestamp(NOW) == "2024-05-01 12:00 UTC"


def test_inline_fields_share_a_line():
    notice = (
        Notice(title="Vouch Summary", footer="footer text")
        .add_field("Vouches", "3", inline=True)
        .add_field("Last Vouch", "just now", inline=True)
        .add_field("Comment", "great")
    )
    html = render_notice(notice)
    assert "<b>Vouches:</b> 3 | <b>Last Vouch:</b> just now\n<b>Comment:</b> great" in html
    assert html.endswith("<i>footer text</i>")
    assert html.startswith("<b>✅ Vouch Summary</b>")


def test_limit_cuts_text_before_escaping():
    notice = (
        Notice(title="Vouch Logged", description="Vouch for @bob by @alice", footer="footer text")
        .add_field("Vouches", "+1", inline=True)
        .add_field("Comment", "&" * 500)
    )
    html = render_notice(notice, limit=1024)
    assert len(render_notice(notice)) > 1024
    assert len(html) <= 1024
    # Every ampersand is still a whole entity
    assert re.search(r"&(?!amp;)", html) is None
    assert "&amp;..." in html
    assert html.endswith("<i>footer text</i>")
    assert "Vouch for @bob by @alice" in html


def test_limit_leaves_short_notices_alone():
    notice = Notice(title="Help", description="short").add_field("Other", "!help")
    assert render_notice(notice, limit=1024) == render_notice(notice)
