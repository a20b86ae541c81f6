import pytest

from conftest import FakeClock, FakeGateway, make_message, make_user

from config import EXPIRED_PAGE_NOTE
from vouchbot.errors import InvalidPageError, PageOutOfRangeError
from vouchbot.models import Notice
from vouchbot.services.pagination import (
    NEXT,
    PREV,
    PageView,
    PaginationController,
    page_slice,
    parse_page_arg,
    total_pages,
    validate_page,
)

OWNER = make_user(1, "owner")
OTHER = make_user(2, "other")


async def render(items, page, total):
    return Notice(title="Items", description=f"Page {page}/{total}: {', '.join(page_slice(items, page, 5))}")


def make_view(total=3, page=1, deadline=120.0):
    return PageView(
        view_id="v1",
        owner_id=OWNER.id,
        items=[],
        page_size=5,
        page=page,
        total_pages=total,
        deadline=deadline,
    )


def test_total_pages_and_slices():
    assert total_pages(0, 5) == 1
    assert total_pages(5, 5) == 1
    assert total_pages(6, 5) == 2
    items = list(range(12))
    assert page_slice(items, 3, 5) == [10, 11]


def test_page_argument_parsing():
    assert parse_page_arg(None) == 1
    assert parse_page_arg("3") == 3
    with pytest.raises(InvalidPageError):
        parse_page_arg("two")


@pytest.mark.parametrize("page,message", [(0, "Page number must be 1 or greater."), (4, "Page must be 1-3.")])
def test_page_bounds(page, message):
    with pytest.raises(PageOutOfRangeError) as excinfo:
        validate_page(page, 15, 5)
    assert excinfo.value.description == message


def test_controls_follow_page_position():
    view = make_view(total=3)
    assert view.prev_disabled and not view.next_disabled

    assert view.signal(OWNER.id, NEXT, now=1.0, timeout=120)
    assert not view.prev_disabled and not view.next_disabled

    assert view.signal(OWNER.id, NEXT, now=2.0, timeout=120)
    assert view.next_disabled and not view.prev_disabled

    # Clamped at the last page
    assert not view.signal(OWNER.id, NEXT, now=3.0, timeout=120)
    assert view.page == 3


def test_only_owner_moves_the_view():
    view = make_view()
    assert not view.signal(OTHER.id, NEXT, now=1.0, timeout=120)
    assert view.page == 1


def test_accepted_signal_resets_deadline():
    view = make_view(deadline=120.0)
    view.signal(OWNER.id, NEXT, now=100.0, timeout=120)
    assert view.deadline == 220.0
    # Rejected signals leave it alone
    view.signal(OTHER.id, PREV, now=150.0, timeout=120)
    assert view.deadline == 220.0


def test_expired_view_ignores_signals():
    view = make_view()
    view.expire()
    assert view.prev_disabled and view.next_disabled
    assert not view.signal(OWNER.id, NEXT, now=1.0, timeout=120)
    assert not make_view(deadline=10.0).signal(OWNER.id, NEXT, now=10.0, timeout=120)


@pytest.mark.asyncio
async def test_single_page_is_sent_without_controls():
    gateway = FakeGateway()
    controller = PaginationController(gateway, timeout=120, clock=FakeClock(0.0))
    view = await controller.open(make_message("!x", OWNER), ["a", "b"], 5, render)

    assert view is None
    assert len(controller) == 0
    assert gateway.replies[-1][2] is None


@pytest.mark.asyncio
async def test_open_starts_on_requested_page():
    gateway = FakeGateway()
    controller = PaginationController(gateway, timeout=120, clock=FakeClock(0.0))
    items = [str(i) for i in range(12)]

    view = await controller.open(make_message("!x", OWNER), items, 5, render, page=2)
    try:
        assert view.page == 2
        notice, controls = gateway.replies[-1][1], gateway.replies[-1][2]
        assert "Page 2/3" in notice.description
        assert not controls.prev_disabled and not controls.next_disabled
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_out_of_range_request_raises_before_sending():
    gateway = FakeGateway()
    controller = PaginationController(gateway, timeout=120, clock=FakeClock(0.0))
    with pytest.raises(PageOutOfRangeError):
        await controller.open(make_message("!x", OWNER), list("abcdefg"), 5, render, page=3)
    assert gateway.replies == []


@pytest.mark.asyncio
async def test_signals_edit_the_message_and_expiry_disables_controls():
    gateway = FakeGateway()
    clock = FakeClock(0.0)
    controller = PaginationController(gateway, timeout=120, clock=clock)
    items = [str(i) for i in range(12)]
    view = await controller.open(make_message("!x", OWNER), items, 5, render)

    try:
        assert await controller.handle_signal(view.view_id, OWNER.id, NEXT)
        assert "Page 2/3" in gateway.edits[-1][2].description

        assert not await controller.handle_signal(view.view_id, OTHER.id, NEXT)
        assert len(gateway.edits) == 1

        clock.advance(121)
        assert await controller.sweep() == 1
        _, _, notice, controls = gateway.edits[-1]
        assert notice.description.endswith(EXPIRED_PAGE_NOTE)
        assert controls.prev_disabled and controls.next_disabled
        assert controller.get(view.view_id) is None

        assert not await controller.handle_signal(view.view_id, OWNER.id, PREV)
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_late_signal_expires_the_view():
    gateway = FakeGateway()
    clock = FakeClock(0.0)
    controller = PaginationController(gateway, timeout=120, clock=clock)
    view = await controller.open(make_message("!x", OWNER), list("abcdefghijk"), 5, render)

    try:
        clock.advance(60)
        assert await controller.handle_signal(view.view_id, OWNER.id, NEXT)
        # Deadline moved to 180, so 150 is still live
        clock.advance(90)
        assert await controller.handle_signal(view.view_id, OWNER.id, PREV)
        clock.advance(200)
        assert not await controller.handle_signal(view.view_id, OWNER.id, NEXT)
        assert controller.get(view.view_id) is None
        assert gateway.edits[-1][2].description.endswith(EXPIRED_PAGE_NOTE)
    finally:
        await controller.close()
