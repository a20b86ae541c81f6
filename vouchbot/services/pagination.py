"""
Paged result views.

A PageView is a small state machine (page index, total pages, idle deadline)
driven by "prev"/"next" signals. The PaginationController owns the live views,
sends the first page through the gateway and turns signals from button presses
into edits. Views expire after an idle timeout: both controls are disabled,
the page is marked as timed out and further signals are ignored.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from config import EXPIRED_PAGE_NOTE
from vouchbot.errors import InvalidPageError, PageOutOfRangeError
from vouchbot.ids import new_view_id
from vouchbot.models import InboundMessage, Notice, PageControls

logger = logging.getLogger(__name__)

PREV = "prev"
NEXT = "next"

# (items, page, total_pages) -> Notice for that page
PageRenderer = Callable[[Sequence, int, int], Awaitable[Notice]]


def total_pages(item_count: int, page_size: int) -> int:
    return max(1, math.ceil(item_count / page_size))


def parse_page_arg(raw: Optional[str]) -> int:
    """Page argument as typed by the user; missing means page 1."""
    if raw is None:
        return 1
    try:
        return int(raw)
    except ValueError:
        raise InvalidPageError(raw)


def validate_page(page: int, item_count: int, page_size: int) -> int:
    pages = total_pages(item_count, page_size)
    if page < 1 or page > pages:
        raise PageOutOfRangeError(page, pages)
    return page


def page_slice(items: Sequence, page: int, page_size: int) -> Sequence:
    start = (page - 1) * page_size
    return items[start:start + page_size]


@dataclass
class PageView:
    view_id: str
    owner_id: int
    items: Sequence
    page_size: int
    page: int
    total_pages: int
    deadline: float
    chat_id: Optional[int] = None
    message_id: Optional[int] = None
    expired: bool = False

    @property
    def prev_disabled(self) -> bool:
        return self.expired or self.page <= 1

    @property
    def next_disabled(self) -> bool:
        return self.expired or self.page >= self.total_pages

    @property
    def controls(self) -> PageControls:
        return PageControls(
            view_id=self.view_id,
            prev_disabled=self.prev_disabled,
            next_disabled=self.next_disabled,
        )

    def signal(self, actor_id: int, action: str, now: float, timeout: float) -> bool:
        """Apply a control signal. Returns True when the page changed."""
        if self.expired or now >= self.deadline:
            return False
        if actor_id != self.owner_id:
            return False
        if action == NEXT and self.page < self.total_pages:
            self.page += 1
        elif action == PREV and self.page > 1:
            self.page -= 1
        else:
            return False
        self.deadline = now + timeout
        return True

    def expire(self) -> None:
        self.expired = True


class PaginationController:
    def __init__(
        self,
        gateway,
        timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.timeout = timeout
        self._clock = clock
        self._views: Dict[str, PageView] = {}
        self._renderers: Dict[str, PageRenderer] = {}
        self._watchers: Dict[str, asyncio.Task] = {}

    def get(self, view_id: str) -> Optional[PageView]:
        return self._views.get(view_id)

    def __len__(self) -> int:
        return len(self._views)

    async def open(
        self,
        message: InboundMessage,
        items: Sequence,
        page_size: int,
        render: PageRenderer,
        page: int = 1,
    ) -> Optional[PageView]:
        """
        Reply with the requested page. Results that fit on one page are sent
        without controls and no view is kept.
        """
        pages = total_pages(len(items), page_size)
        page = validate_page(page, len(items), page_size)
        notice = await render(items, page, pages)

        if pages <= 1:
            await self.gateway.reply(message, notice)
            return None

        view = PageView(
            view_id=new_view_id(),
            owner_id=message.author.id,
            items=items,
            page_size=page_size,
            page=page,
            total_pages=pages,
            deadline=self._clock() + self.timeout,
            chat_id=message.chat_id,
        )
        sent_id = await self.gateway.reply(message, notice, controls=view.controls)
        if sent_id is None:
            return None
        view.message_id = sent_id
        self._views[view.view_id] = view
        self._renderers[view.view_id] = render
        self._start_watcher(view)
        return view

    async def handle_signal(self, view_id: str, actor_id: int, action: str) -> bool:
        """Handle a button press. Returns True when the view was re-rendered."""
        view = self._views.get(view_id)
        if view is None:
            return False
        now = self._clock()
        if now >= view.deadline:
            await self.expire(view_id)
            return False
        if not view.signal(actor_id, action, now, self.timeout):
            return False

        render = self._renderers[view_id]
        notice = await render(view.items, view.page, view.total_pages)
        await self.gateway.edit(view.chat_id, view.message_id, notice, controls=view.controls)
        return True

    async def expire(self, view_id: str) -> None:
        view = self._views.pop(view_id, None)
        render = self._renderers.pop(view_id, None)
        watcher = self._watchers.pop(view_id, None)
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        if view is None or render is None:
            return
        view.expire()
        notice = (await render(view.items, view.page, view.total_pages)).append_line(EXPIRED_PAGE_NOTE)
        await self.gateway.edit(view.chat_id, view.message_id, notice, controls=view.controls)
        logger.debug("Pagination view %s expired on page %d", view_id, view.page)

    async def sweep(self) -> int:
        """Expire every view whose deadline has passed."""
        now = self._clock()
        due = [vid for vid, view in self._views.items() if now >= view.deadline]
        for view_id in due:
            await self.expire(view_id)
        return len(due)

    async def close(self) -> None:
        """Stop every expiry watcher. Views are left as they are."""
        watchers = list(self._watchers.values())
        self._watchers.clear()
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)

    def _start_watcher(self, view: PageView) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._watch(view.view_id))
        except RuntimeError:
            return
        self._watchers[view.view_id] = task

    async def _watch(self, view_id: str) -> None:
        while True:
            view = self._views.get(view_id)
            if view is None:
                return
            remaining = view.deadline - self._clock()
            if remaining <= 0:
                await self.expire(view_id)
                return
            await asyncio.sleep(remaining)
