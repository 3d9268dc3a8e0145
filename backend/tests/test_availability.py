"""
Tests for the availability ledger: overlap rule, host blocks, calendar window.
"""

from datetime import date

import pytest

from app.core.exceptions import Forbidden, NotFound, RejectionReason, ValidationError
from app.models.booking import STATUS_CANCELLED
from app.services.availability_ledger import AvailabilityLedger, parse_calendar_date, ranges_overlap


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((date(2024, 6, 10), date(2024, 6, 15)), (date(2024, 6, 15), date(2024, 6, 18)), False),
        ((date(2024, 6, 10), date(2024, 6, 15)), (date(2024, 6, 5), date(2024, 6, 10)), False),
        ((date(2024, 6, 10), date(2024, 6, 15)), (date(2024, 6, 14), date(2024, 6, 16)), True),
        ((date(2024, 6, 10), date(2024, 6, 15)), (date(2024, 6, 11), date(2024, 6, 12)), True),
        ((date(2024, 6, 10), date(2024, 6, 15)), (date(2024, 6, 1), date(2024, 6, 30)), True),
    ],
)
def test_ranges_overlap_is_half_open(a, b, expected):
    assert ranges_overlap(*a, *b) is expected
    assert ranges_overlap(*b, *a) is expected


def test_parse_calendar_date_rejects_loose_tokens():
    assert parse_calendar_date("2024-02-29") == date(2024, 2, 29)
    for token in ("2023-02-29", "2024-6-1", "20240601", 20240601, "", None, "2024-06-01T00:00:00"):
        with pytest.raises(ValidationError) as exc_info:
            parse_calendar_date(token)
        assert exc_info.value.reason == RejectionReason.INVALID_RANGE


@pytest.mark.asyncio
async def test_adjacent_ranges_are_free(ledger, villa, confirmed_booking):
    """Checkout day of one stay is the check-in day of the next."""
    assert await ledger.is_range_free(villa.id, date(2024, 6, 15), date(2024, 6, 18))
    assert await ledger.is_range_free(villa.id, date(2024, 6, 7), date(2024, 6, 10))


@pytest.mark.asyncio
async def test_overlapping_range_is_not_free(ledger, villa, confirmed_booking):
    assert not await ledger.is_range_free(villa.id, date(2024, 6, 14), date(2024, 6, 16))
    assert not await ledger.is_range_free(villa.id, date(2024, 6, 1), date(2024, 6, 30))


@pytest.mark.asyncio
async def test_other_villa_bookings_do_not_count(ledger, draft_villa, confirmed_booking):
    assert await ledger.is_range_free(draft_villa.id, date(2024, 6, 10), date(2024, 6, 15))


@pytest.mark.asyncio
async def test_cancelled_booking_never_occupies(ledger, db_session, villa, confirmed_booking):
    confirmed_booking.status = STATUS_CANCELLED
    await db_session.commit()

    assert await ledger.is_range_free(villa.id, date(2024, 6, 10), date(2024, 6, 15))
    assert await ledger.list_unavailable_dates(villa.id, date(2024, 6, 1), date(2024, 7, 1)) == set()


@pytest.mark.asyncio
async def test_inverted_range_rejected(ledger, villa):
    with pytest.raises(ValidationError) as exc_info:
        await ledger.is_range_free(villa.id, date(2024, 6, 15), date(2024, 6, 15))
    assert exc_info.value.reason == RejectionReason.INVALID_RANGE


@pytest.mark.asyncio
async def test_blocked_date_makes_range_unavailable(ledger, villa, host, actor_for):
    await ledger.block_dates(villa.id, ["2024-08-03"], actor_for(host))

    assert not await ledger.is_range_free(villa.id, date(2024, 8, 1), date(2024, 8, 5))
    # The blocked night is the checkout day here, so it is not slept in
    assert await ledger.is_range_free(villa.id, date(2024, 8, 1), date(2024, 8, 3))


@pytest.mark.asyncio
async def test_unblock_reopens_dates(ledger, villa, host, actor_for):
    actor = actor_for(host)
    await ledger.block_dates(villa.id, ["2024-08-03", "2024-08-04"], actor)
    await ledger.unblock_dates(villa.id, ["2024-08-03"], actor)

    assert await ledger.is_range_free(villa.id, date(2024, 8, 1), date(2024, 8, 4))
    assert not await ledger.is_range_free(villa.id, date(2024, 8, 4), date(2024, 8, 6))


@pytest.mark.asyncio
async def test_list_unavailable_dates_unions_and_clips(ledger, villa, host, confirmed_booking, actor_for):
    await ledger.block_dates(villa.id, ["2024-06-20", "2024-07-02"], actor_for(host))

    unavailable = await ledger.list_unavailable_dates(villa.id, date(2024, 6, 12), date(2024, 6, 25))

    assert unavailable == {
        date(2024, 6, 12),
        date(2024, 6, 13),
        date(2024, 6, 14),
        date(2024, 6, 20),
    }


@pytest.mark.asyncio
async def test_list_unavailable_dates_caps_window(ledger, villa):
    with pytest.raises(ValidationError):
        await ledger.list_unavailable_dates(villa.id, date(2024, 1, 1), date(2026, 1, 1))


@pytest.mark.asyncio
async def test_block_dates_requires_host(ledger, villa, guest, actor_for):
    with pytest.raises(Forbidden) as exc_info:
        await ledger.block_dates(villa.id, ["2024-08-03"], actor_for(guest))
    assert exc_info.value.reason == RejectionReason.NOT_OWNER
    assert await ledger.is_range_free(villa.id, date(2024, 8, 1), date(2024, 8, 5))


@pytest.mark.asyncio
async def test_admin_may_block_any_villa(ledger, villa, admin, actor_for):
    days = await ledger.block_dates(villa.id, ["2024-08-04", "2024-08-03", "2024-08-03"], actor_for(admin))

    assert days == [date(2024, 8, 3), date(2024, 8, 4)]


@pytest.mark.asyncio
async def test_block_dates_unknown_villa(ledger, host, actor_for):
    with pytest.raises(NotFound) as exc_info:
        await ledger.block_dates(9999, ["2024-08-03"], actor_for(host))
    assert exc_info.value.reason == RejectionReason.VILLA_NOT_FOUND


@pytest.mark.asyncio
async def test_block_dates_rejects_malformed_date(ledger, villa, host, actor_for):
    with pytest.raises(ValidationError):
        await ledger.block_dates(villa.id, ["2024-13-01"], actor_for(host))


@pytest.mark.asyncio
async def test_block_date_count_follows_configured_window(session_factory, reservation_lock, villa, host, actor_for):
    ledger = AvailabilityLedger(session_factory, reservation_lock, max_window_days=3)
    days = ["2024-08-01", "2024-08-02", "2024-08-03", "2024-08-04"]

    with pytest.raises(ValidationError) as exc_info:
        await ledger.block_dates(villa.id, days, actor_for(host))
    assert exc_info.value.reason == RejectionReason.INVALID_RANGE

    assert len(await ledger.block_dates(villa.id, days[:3], actor_for(host))) == 3
