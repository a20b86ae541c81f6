from __future__ import annotations

import uuid


def new_vouch_id() -> str:
    """Return a fresh identifier for a vouch record."""
    return str(uuid.uuid4())


def new_reference_id() -> str:
    """Return a short-lived reference shown on usage guides so admins can trace reports."""
    return str(uuid.uuid4())


def new_view_id() -> str:
    # Telegram callback data is capped at 64 bytes, keep view ids short
    return uuid.uuid4().hex[:12]
