from __future__ import annotations

import logging
from typing import Optional

import httpx

from config import THUMBNAIL_EXTENSIONS

logger = logging.getLogger(__name__)


def validate_thumbnail_url(url: Optional[str]) -> Optional[str]:
    """
    Return the URL if it is an absolute http(s) link to an image file,
    otherwise None. Nothing is fetched.
    """
    if not url:
        return None
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError):
        logger.debug("Rejected thumbnail url %r: unparseable", url)
        return None

    if parsed.scheme not in ("http", "https") or not parsed.host:
        logger.debug("Rejected thumbnail url %r: not an absolute http(s) url", url)
        return None
    if not parsed.path.lower().endswith(THUMBNAIL_EXTENSIONS):
        logger.debug("Rejected thumbnail url %r: not an image path", url)
        return None
    return url.strip()
