"""
Tests for the booking transaction manager, including concurrency scenarios.
"""

import asyncio
import json
from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import (
    BookingConflict,
    DatesUnavailable,
    Forbidden,
    InvalidTransition,
    NotFound,
    PolicyViolation,
    RejectionReason,
    StoreFailure,
    ValidationError,
)
from app.models.booking import STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_PENDING
from app.repositories import BookingRepository
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingTransactionManager
from app.services import notification_service
from app.services.interfaces.notification_sink import BookingNotification


def make_request(villa, guest, start="2024-07-01", end="2024-07-05", **overrides) -> BookingCreate:
    data = {
        "villa_id": villa.id,
        "guest_user_id": guest.id,
        "start_date": start,
        "end_date": end,
        "adults": 2,
    }
    data.update(overrides)
    return BookingCreate(**data)


@pytest.mark.asyncio
async def test_submit_creates_pending_booking(manager, villa, guest, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))

    assert booking.id is not None
    assert booking.status == STATUS_PENDING
    assert booking.host_user_id == villa.host_user_id
    assert booking.start_date == date(2024, 7, 1)
    assert booking.end_date == date(2024, 7, 5)
    assert booking.nights == 4


@pytest.mark.asyncio
async def test_price_is_computed_server_side(manager, villa, guest, actor_for):
    """Client totals are ignored; 4 nights * 200 + 50 + 25."""
    request = make_request(villa, guest, total_price=Decimal("1.00"), cleaning_fee=Decimal("0"))

    booking = await manager.submit_booking(request, actor_for(guest))

    assert booking.subtotal == Decimal("800.00")
    assert booking.cleaning_fee == Decimal("50.00")
    assert booking.service_fee == Decimal("25.00")
    assert booking.total_price == Decimal("875.00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides, error, reason",
    [
        ({"start": "2024-07-05", "end": "2024-07-05"}, ValidationError, RejectionReason.INVALID_RANGE),
        ({"start": "2024-07-05", "end": "2024-07-01"}, ValidationError, RejectionReason.INVALID_RANGE),
        ({"start": "2024-02-30"}, ValidationError, RejectionReason.INVALID_RANGE),
        ({"adults": 0}, ValidationError, RejectionReason.INVALID_GUEST_COUNT),
        ({"children": -1}, ValidationError, RejectionReason.INVALID_GUEST_COUNT),
        ({"end": "2024-07-02"}, PolicyViolation, RejectionReason.BELOW_MINIMUM_STAY),
        ({"adults": 3, "children": 2}, PolicyViolation, RejectionReason.OVER_OCCUPANCY),
    ],
)
async def test_structural_and_policy_rejections(manager, villa, guest, actor_for, overrides, error, reason):
    with pytest.raises(error) as exc_info:
        await manager.submit_booking(make_request(villa, guest, **overrides), actor_for(guest))
    assert exc_info.value.reason == reason


@pytest.mark.asyncio
async def test_infants_do_not_count_toward_occupancy(manager, villa, guest, actor_for):
    booking = await manager.submit_booking(
        make_request(villa, guest, adults=2, children=2, infants=2), actor_for(guest)
    )
    assert booking.infants == 2


@pytest.mark.asyncio
async def test_unknown_villa_and_guest(manager, villa, guest, actor_for):
    with pytest.raises(NotFound) as exc_info:
        await manager.submit_booking(make_request(villa, guest, villa_id=9999), actor_for(guest))
    assert exc_info.value.reason == RejectionReason.VILLA_NOT_FOUND

    with pytest.raises(NotFound) as exc_info:
        await manager.submit_booking(make_request(villa, guest, guest_user_id=9999), actor_for(guest))
    assert exc_info.value.reason == RejectionReason.GUEST_NOT_FOUND


@pytest.mark.asyncio
async def test_unpublished_villa_rejected(manager, draft_villa, guest, actor_for):
    with pytest.raises(PolicyViolation) as exc_info:
        await manager.submit_booking(make_request(draft_villa, guest), actor_for(guest))
    assert exc_info.value.reason == RejectionReason.NOT_PUBLISHED


@pytest.mark.asyncio
async def test_minimum_stay_reported_before_availability(manager, villa, guest, confirmed_booking, actor_for):
    """A one-night request on booked dates is a policy problem first."""
    with pytest.raises(PolicyViolation) as exc_info:
        await manager.submit_booking(
            make_request(villa, guest, start="2024-06-11", end="2024-06-12"), actor_for(guest)
        )
    assert exc_info.value.reason == RejectionReason.BELOW_MINIMUM_STAY


@pytest.mark.asyncio
async def test_cannot_book_for_someone_else(manager, villa, guest, other_guest, actor_for):
    with pytest.raises(Forbidden) as exc_info:
        await manager.submit_booking(make_request(villa, other_guest), actor_for(guest))
    assert exc_info.value.reason == RejectionReason.IDENTITY_MISMATCH


@pytest.mark.asyncio
async def test_admin_may_book_on_behalf_of_guest(manager, villa, guest, admin, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(admin))
    assert booking.guest_user_id == guest.id


@pytest.mark.asyncio
async def test_overlap_with_existing_booking_rejected(manager, villa, guest, confirmed_booking, actor_for):
    with pytest.raises(DatesUnavailable) as exc_info:
        await manager.submit_booking(
            make_request(villa, guest, start="2024-06-13", end="2024-06-17"), actor_for(guest)
        )
    assert exc_info.value.reason == RejectionReason.DATES_UNAVAILABLE


@pytest.mark.asyncio
async def test_back_to_back_stays_accepted(manager, villa, guest, confirmed_booking, actor_for):
    booking = await manager.submit_booking(
        make_request(villa, guest, start="2024-06-15", end="2024-06-17"), actor_for(guest)
    )
    assert booking.status == STATUS_PENDING


@pytest.mark.asyncio
async def test_host_block_rejects_booking(manager, ledger, villa, guest, host, actor_for):
    await ledger.block_dates(villa.id, ["2024-07-03"], actor_for(host))

    with pytest.raises(DatesUnavailable):
        await manager.submit_booking(make_request(villa, guest), actor_for(guest))


@pytest.mark.asyncio
async def test_concurrent_overlapping_submissions_one_wins(
    manager, ledger, villa, guest, other_guest, actor_for
):
    """Two guests race for overlapping nights; exactly one booking survives."""
    results = await asyncio.gather(
        manager.submit_booking(
            make_request(villa, guest, start="2024-07-01", end="2024-07-05"), actor_for(guest)
        ),
        manager.submit_booking(
            make_request(villa, other_guest, start="2024-07-03", end="2024-07-08"),
            actor_for(other_guest),
        ),
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], DatesUnavailable)

    unavailable = await ledger.list_unavailable_dates(villa.id, date(2024, 7, 1), date(2024, 7, 10))
    assert len(unavailable) == accepted[0].nights


@pytest.mark.asyncio
async def test_many_concurrent_submissions_same_range(manager, villa, guest, actor_for):
    attempts = 10
    results = await asyncio.gather(
        *[manager.submit_booking(make_request(villa, guest), actor_for(guest)) for _ in range(attempts)],
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    assert len(accepted) == 1
    assert all(isinstance(r, DatesUnavailable) for r in results if isinstance(r, Exception))


@pytest.mark.asyncio
async def test_store_conflict_reported_as_dates_unavailable(manager, villa, guest, actor_for, monkeypatch):
    """A refused insert looks exactly like a taken range to the caller."""

    async def refuse(self, booking, expected_free_check):
        raise BookingConflict("exclusion constraint")

    monkeypatch.setattr(BookingRepository, "insert_booking_atomic", refuse)

    with pytest.raises(DatesUnavailable):
        await manager.submit_booking(make_request(villa, guest), actor_for(guest))


@pytest.mark.asyncio
async def test_cancellation_releases_dates(manager, ledger, villa, guest, other_guest, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    assert not await ledger.is_range_free(villa.id, date(2024, 7, 1), date(2024, 7, 5))

    cancelled = await manager.cancel_booking(booking.id, actor_for(guest), reason="Change of plans")

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.cancellation_reason == "Change of plans"
    assert await ledger.is_range_free(villa.id, date(2024, 7, 1), date(2024, 7, 5))

    rebooked = await manager.submit_booking(make_request(villa, other_guest), actor_for(other_guest))
    assert rebooked.status == STATUS_PENDING


@pytest.mark.asyncio
async def test_host_confirms_then_cancels(manager, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))

    confirmed = await manager.confirm_booking(booking.id, actor_for(host))
    assert confirmed.status == STATUS_CONFIRMED

    cancelled = await manager.cancel_booking(booking.id, actor_for(host))
    assert cancelled.status == STATUS_CANCELLED


@pytest.mark.asyncio
async def test_guest_cannot_confirm(manager, villa, guest, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))

    with pytest.raises(Forbidden) as exc_info:
        await manager.confirm_booking(booking.id, actor_for(guest))
    assert exc_info.value.reason == RejectionReason.NOT_OWNER


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(manager, villa, guest, other_guest, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))

    with pytest.raises(Forbidden):
        await manager.cancel_booking(booking.id, actor_for(other_guest))


@pytest.mark.asyncio
async def test_cancelled_is_terminal(manager, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    await manager.cancel_booking(booking.id, actor_for(guest))

    with pytest.raises(InvalidTransition):
        await manager.confirm_booking(booking.id, actor_for(host))
    with pytest.raises(InvalidTransition):
        await manager.cancel_booking(booking.id, actor_for(guest))


@pytest.mark.asyncio
async def test_confirmed_cannot_be_confirmed_again(manager, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    await manager.confirm_booking(booking.id, actor_for(host))

    with pytest.raises(InvalidTransition) as exc_info:
        await manager.confirm_booking(booking.id, actor_for(host))
    assert exc_info.value.reason == RejectionReason.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_transition_unknown_booking(manager, host, actor_for):
    with pytest.raises(NotFound) as exc_info:
        await manager.confirm_booking(9999, actor_for(host))
    assert exc_info.value.reason == RejectionReason.BOOKING_NOT_FOUND


@pytest.mark.asyncio
async def test_cancellation_gate_can_refuse(
    session_factory, ledger, reservation_lock, notification_sink, villa, guest, actor_for
):
    strict = BookingTransactionManager(
        session_factory,
        ledger,
        reservation_lock,
        notification_sink,
        cancellation_policy=lambda booking, villa, actor: actor.user_id != booking.guest_user_id,
    )
    booking = await strict.submit_booking(make_request(villa, guest), actor_for(guest))

    with pytest.raises(PolicyViolation) as exc_info:
        await strict.cancel_booking(booking.id, actor_for(guest))
    assert exc_info.value.reason == RejectionReason.CANCELLATION_NOT_ALLOWED
    assert not await ledger.is_range_free(villa.id, date(2024, 7, 1), date(2024, 7, 5))


@pytest.mark.asyncio
async def test_notifications_go_to_guest_and_host(manager, notification_sink, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    await manager.confirm_booking(booking.id, actor_for(host))
    await manager.cancel_booking(booking.id, actor_for(guest))

    assert notification_sink.events_for(guest.id) == [
        "booking_created",
        "booking_status_updated",
        "booking_canceled",
    ]
    assert notification_sink.events_for(host.id) == [
        "booking_request_received",
        "booking_status_changed",
        "booking_canceled_by_guest",
    ]
    last = notification_sink.notifications[-1]
    assert last.booking["id"] == booking.id
    assert last.booking["status"] == STATUS_CANCELLED
    assert last.booking["total_price"] == "875.00"


@pytest.mark.asyncio
async def test_host_cancellation_event(manager, notification_sink, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    notification_sink.clear()

    await manager.cancel_booking(booking.id, actor_for(host))

    assert notification_sink.events_for(host.id) == ["booking_canceled_by_host"]
    assert notification_sink.events_for(guest.id) == ["booking_canceled"]


@pytest.mark.asyncio
async def test_villa_watchers_see_every_change(manager, notification_sink, villa, guest, host, actor_for):
    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))
    await manager.confirm_booking(booking.id, actor_for(host))
    await manager.cancel_booking(booking.id, actor_for(host))

    assert notification_sink.events_for_villa(villa.id) == [
        "new_booking",
        "booking_status_changed",
        "booking_canceled",
    ]
    broadcast = notification_sink.notifications[-1]
    assert broadcast.is_villa_broadcast
    assert broadcast.recipient_user_id is None
    assert broadcast.to_message()["villa_id"] == villa.id
    assert broadcast.booking["id"] == booking.id


class _PublishRecorder:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


@pytest.mark.asyncio
async def test_redis_sink_routes_villa_broadcasts(villa, guest, monkeypatch):
    recorder = _PublishRecorder()

    async def fake_get_redis():
        return recorder

    monkeypatch.setattr(notification_service, "get_redis", fake_get_redis)
    sink = notification_service.RedisNotificationSink(prefix="bookings")
    payload = {"id": 11, "status": STATUS_PENDING}

    await sink.publish(BookingNotification(guest.id, "booking_created", payload, villa_id=villa.id))
    await sink.publish(BookingNotification(None, "new_booking", payload, villa_id=villa.id))

    assert [channel for channel, _ in recorder.published] == [
        f"bookings:user:{guest.id}:bookings",
        f"bookings:villa:{villa.id}:bookings",
    ]
    assert recorder.published[1][1]["event"] == "new_booking"


@pytest.mark.asyncio
async def test_rejected_submission_sends_nothing(manager, notification_sink, villa, guest, confirmed_booking, actor_for):
    with pytest.raises(DatesUnavailable):
        await manager.submit_booking(
            make_request(villa, guest, start="2024-06-12", end="2024-06-14"), actor_for(guest)
        )
    assert notification_sink.notifications == []


@pytest.mark.asyncio
async def test_sink_failure_does_not_undo_booking(manager, notification_sink, villa, guest, actor_for, monkeypatch):
    async def broken(notification):
        raise StoreFailure("Notification channel unavailable")

    monkeypatch.setattr(notification_sink, "publish", broken)

    booking = await manager.submit_booking(make_request(villa, guest), actor_for(guest))

    assert booking.status == STATUS_PENDING
    assert not await manager.ledger.is_range_free(villa.id, date(2024, 7, 1), date(2024, 7, 5))


@pytest.mark.asyncio
async def test_minimum_stay_never_consults_ledger(manager, villa, guest, actor_for, monkeypatch):
    calls = []

    async def spy(*args, **kwargs):
        calls.append(args)
        return True

    monkeypatch.setattr(manager.ledger, "is_range_free", spy)

    with pytest.raises(PolicyViolation):
        await manager.submit_booking(
            make_request(villa, guest, start="2024-07-01", end="2024-07-02"), actor_for(guest)
        )
    assert calls == []


@pytest.mark.asyncio
async def test_june_scenario(manager, villa, guest, other_guest, confirmed_booking, actor_for):
    """Existing stay 10th-15th; A overlaps, B starts at checkout, C and D race."""
    with pytest.raises(DatesUnavailable):
        await manager.submit_booking(
            make_request(villa, guest, start="2024-06-12", end="2024-06-14"), actor_for(guest)
        )

    b = await manager.submit_booking(
        make_request(villa, guest, start="2024-06-15", end="2024-06-17"), actor_for(guest)
    )
    assert b.status == STATUS_PENDING
    assert b.total_price == 2 * Decimal("200.00") + Decimal("50.00") + Decimal("25.00")

    c, d = await asyncio.gather(
        manager.submit_booking(
            make_request(villa, guest, start="2024-06-20", end="2024-06-22"), actor_for(guest)
        ),
        manager.submit_booking(
            make_request(villa, other_guest, start="2024-06-20", end="2024-06-22"),
            actor_for(other_guest),
        ),
        return_exceptions=True,
    )
    outcomes = sorted(type(r).__name__ for r in (c, d))
    assert outcomes == ["Booking", "DatesUnavailable"]
