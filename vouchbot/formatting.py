"""
Text helpers shared by the command handlers and the gateway.

Everything the bot sends uses Telegram HTML, so all user-provided text goes
through `escape` before it reaches a template.
"""
from __future__ import annotations

import html
import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from vouchbot.models import Notice

TONE_ICONS = {
    "ok": "✅",
    "error": "❌",
    "info": "ℹ️",
    "warn": "⚠️",
}


def escape(value: object) -> str:
    return html.escape(str(value), quote=False)


def truncate(text: str, limit: int, ellipsis: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ellipsis


def format_timestamp(moment: datetime) -> str:
    """Absolute UTC timestamp, e.g. `2024-05-01 13:37 UTC`."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def format_relative(moment: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    seconds = int((now - moment).total_seconds())
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            amount = seconds // size
            return f"{amount} {unit}{'s' if amount != 1 else ''} ago"
    return "just now"


def _render(notice: Notice) -> str:
    icon = TONE_ICONS.get(notice.tone, "")
    title = f"{icon} {escape(notice.title)}".strip()
    parts = [f"<b>{title}</b>"]
    if notice.description:
        parts.append(escape(notice.description))

    lines = []
    inline_run = []
    for fld in notice.fields:
        entry = f"<b>{escape(fld.name)}:</b> {escape(fld.value)}"
        if fld.inline:
            inline_run.append(entry)
            continue
        if inline_run:
            lines.append(" | ".join(inline_run))
            inline_run = []
        lines.append(entry)
    if inline_run:
        lines.append(" | ".join(inline_run))
    if lines:
        parts.append("\n".join(lines))

    if notice.footer:
        parts.append(f"<i>{escape(notice.footer)}</i>")
    return "\n\n".join(parts)


def _shorten(text: str, overflow: int) -> str:
    # overflow is counted in escaped characters
    cut = math.ceil(overflow * len(text) / len(escape(text))) + 3
    keep = len(text) - cut
    if keep <= 0:
        return ""
    return truncate(text, keep)


def render_notice(notice: Notice, limit: Optional[int] = None) -> str:
    """
    Render a Notice as Telegram HTML.

    With a limit, the description and field values are cut as plain text,
    longest first, until the escaped result fits. Markup and entities are
    never split.
    """
    rendered = _render(notice)
    while limit is not None and len(rendered) > limit:
        texts = [notice.description] + [fld.value for fld in notice.fields]
        longest = max(range(len(texts)), key=lambda i: len(texts[i]))
        if not texts[longest]:
            break
        shortened = _shorten(texts[longest], len(rendered) - limit)
        if longest == 0:
            notice = replace(notice, description=shortened)
        else:
            fields = list(notice.fields)
            fields[longest - 1] = replace(fields[longest - 1], value=shortened)
            notice = replace(notice, fields=tuple(fields))
        rendered = _render(notice)
    return rendered
