"""
Booking transaction manager: validate, price and atomically reserve a stay.

CONCURRENCY STRATEGY: Serialized, Re-validating Commit
=======================================================

Problem:
  Two guests ask for the same villa and overlapping nights at the same time.
  Both read "free", both INSERT, both succeed.
  Result: Double booking.

Solution:
  The "is it free" decision belongs to the commit step alone.

  1. Validate and run an advisory availability check (cheap early reject)
  2. Take the villa's reservation lock (in-process or Redis, see
     strategy_factory) so commits for one villa queue up while other villas
     proceed in parallel
  3. Open a transaction, SELECT the villa row FOR UPDATE (PostgreSQL keeps
     commits serialized even across workers without the Redis lock)
  4. Re-check availability inside that transaction, then INSERT
  5. The PostgreSQL EXCLUDE constraint on (villa_id, daterange) for active
     bookings is the final safety net; a refused INSERT is DatesUnavailable

  A lost race and an already-taken range both surface as DatesUnavailable.
  Nothing here retries a failed commit: resubmitting is the guest's call.

Status transitions use a conditional UPDATE ... WHERE status = :expected,
the same idea as a version column: if another transition got there first
the row count is zero and the caller gets InvalidTransition.
"""

import time
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    BookingConflict,
    BookingError,
    DatesUnavailable,
    Forbidden,
    InvalidTransition,
    NotFound,
    PolicyViolation,
    RejectionReason,
    StoreFailure,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import (
    booking_latency,
    record_booking_attempt,
    record_notification,
    record_transition,
)
from app.core.security import Actor
from app.db.session import store_errors
from app.models.booking import (
    Booking,
    PAYMENT_PENDING,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
)
from app.models.villa import Villa, VILLA_PUBLISHED
from app.repositories import BookingRepository, UserRepository, VillaRepository
from app.schemas.booking import BookingCreate, BookingResponse
from app.services.availability_ledger import (
    AvailabilityLedger,
    parse_calendar_date,
    require_ordered_range,
)
from app.services.interfaces.notification_sink import BookingNotification, NotificationSink
from app.services.interfaces.reservation_lock import ReservationLock
from app.services.pricing import quote_stay

logger = get_logger(__name__)

# (booking, villa, actor) -> may this actor cancel now?
CancellationPolicy = Callable[[Booking, Villa, Actor], bool]

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_CANCELLED},
    STATUS_CANCELLED: set(),
}


def allow_all_cancellations(booking: Booking, villa: Villa, actor: Actor) -> bool:
    return True


class BookingTransactionManager:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        ledger: AvailabilityLedger,
        reservation_lock: ReservationLock,
        notification_sink: NotificationSink,
        cancellation_policy: CancellationPolicy = allow_all_cancellations,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.reservation_lock = reservation_lock
        self.notification_sink = notification_sink
        self.cancellation_policy = cancellation_policy

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_booking(self, request: BookingCreate, actor: Actor) -> Booking:
        """
        Create a pending booking or raise the first rejection that applies.

        Order: structure, villa policy, identity, availability, commit.
        """
        started = time.perf_counter()
        try:
            booking = await self._submit(request, actor)
        except BookingError as e:
            record_booking_attempt(e.reason.value)
            self._log_rejection(e, request, actor)
            raise
        finally:
            booking_latency.observe(time.perf_counter() - started)

        record_booking_attempt("accepted")
        logger.info(
            "booking_created",
            booking_id=booking.id,
            villa_id=booking.villa_id,
            guest_user_id=booking.guest_user_id,
            start_date=booking.start_date.isoformat(),
            end_date=booking.end_date.isoformat(),
            total_price=str(booking.total_price),
        )
        await self._notify(booking, "booking_created", "booking_request_received", "new_booking")
        return booking

    async def _submit(self, request: BookingCreate, actor: Actor) -> Booking:
        # 1. Structural
        start = parse_calendar_date(request.start_date)
        end = parse_calendar_date(request.end_date)
        require_ordered_range(start, end)
        if request.adults < 1:
            raise ValidationError(
                RejectionReason.INVALID_GUEST_COUNT, "At least one adult is required"
            )
        if request.children < 0 or request.infants < 0:
            raise ValidationError(
                RejectionReason.INVALID_GUEST_COUNT, "Guest counts cannot be negative"
            )

        with store_errors("booking validation"):
            async with self.session_factory() as db:
                guest = await UserRepository(db).get_user(request.guest_user_id)
                villa = await VillaRepository(db).get_villa(request.villa_id)
        if guest is None:
            raise NotFound(
                RejectionReason.GUEST_NOT_FOUND, f"Guest {request.guest_user_id} not found"
            )
        if villa is None:
            raise NotFound(RejectionReason.VILLA_NOT_FOUND, f"Villa {request.villa_id} not found")

        # 2. Policy
        self._check_policy(villa, request, start, end)

        # 3. Identity
        if not actor.is_admin and actor.user_id != request.guest_user_id:
            raise Forbidden(
                RejectionReason.IDENTITY_MISMATCH, "You can only book stays for yourself"
            )

        # 4. Availability (advisory)
        if not await self.ledger.is_range_free(villa.id, start, end):
            raise DatesUnavailable()

        # 5. Commit
        return await self._commit(request, start, end)

    def _check_policy(self, villa: Villa, request: BookingCreate, start, end) -> None:
        nights = (end - start).days
        if nights < villa.minimum_stay_nights:
            raise PolicyViolation(
                RejectionReason.BELOW_MINIMUM_STAY,
                f"This villa requires a minimum stay of {villa.minimum_stay_nights} nights",
            )
        if request.adults + request.children > villa.occupancy:
            raise PolicyViolation(
                RejectionReason.OVER_OCCUPANCY,
                f"This villa sleeps at most {villa.occupancy} guests",
            )
        if villa.status != VILLA_PUBLISHED:
            raise PolicyViolation(
                RejectionReason.NOT_PUBLISHED, "This villa is not accepting bookings"
            )

    async def _commit(self, request: BookingCreate, start, end) -> Booking:
        villa_id = request.villa_id
        async with self.reservation_lock.hold(villa_id):
            with store_errors("booking commit"):
                async with self.session_factory() as db:
                    async with db.begin():
                        villa = await VillaRepository(db).get_villa(villa_id, for_update=True)
                        if villa is None:
                            raise NotFound(
                                RejectionReason.VILLA_NOT_FOUND, f"Villa {villa_id} not found"
                            )
                        # The host may have edited the villa since validation
                        self._check_policy(villa, request, start, end)

                        quote = quote_stay(villa, start, end)
                        booking = Booking(
                            villa_id=villa.id,
                            guest_user_id=request.guest_user_id,
                            host_user_id=villa.host_user_id,
                            start_date=start,
                            end_date=end,
                            adults=request.adults,
                            children=request.children,
                            infants=request.infants,
                            nights=quote.nights,
                            subtotal=quote.subtotal,
                            cleaning_fee=quote.cleaning_fee,
                            service_fee=quote.service_fee,
                            total_price=quote.total_price,
                            status=STATUS_PENDING,
                            payment_status=PAYMENT_PENDING,
                            is_guest_id_provided=request.is_guest_id_provided,
                        )
                        try:
                            return await BookingRepository(db).insert_booking_atomic(
                                booking,
                                lambda: self.ledger.is_range_free(villa_id, start, end, session=db),
                            )
                        except BookingConflict:
                            raise DatesUnavailable()

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def confirm_booking(self, booking_id: int, actor: Actor) -> Booking:
        booking = await self._transition(booking_id, actor, STATUS_CONFIRMED)
        await self._notify(
            booking, "booking_status_updated", "booking_status_changed", "booking_status_changed"
        )
        return booking

    async def cancel_booking(
        self, booking_id: int, actor: Actor, reason: Optional[str] = None
    ) -> Booking:
        """Cancel and release the range immediately."""
        booking = await self._transition(booking_id, actor, STATUS_CANCELLED, reason)
        host_event = (
            "booking_canceled_by_guest"
            if actor.user_id == booking.guest_user_id
            else "booking_canceled_by_host"
        )
        await self._notify(booking, "booking_canceled", host_event, "booking_canceled")
        return booking

    async def _transition(
        self,
        booking_id: int,
        actor: Actor,
        new_status: str,
        reason: Optional[str] = None,
    ) -> Booking:
        with store_errors("booking status update"):
            async with self.session_factory() as db:
                async with db.begin():
                    repo = BookingRepository(db)
                    booking = await repo.get_booking(booking_id, for_update=True)
                    if booking is None:
                        raise NotFound(
                            RejectionReason.BOOKING_NOT_FOUND, f"Booking {booking_id} not found"
                        )
                    self._authorize_transition(booking, actor, new_status)

                    previous = booking.status
                    if new_status not in ALLOWED_TRANSITIONS[previous]:
                        raise InvalidTransition(f"Booking is {previous}; cannot become {new_status}")

                    if new_status == STATUS_CANCELLED:
                        villa = await VillaRepository(db).get_villa(booking.villa_id)
                        if not self.cancellation_policy(booking, villa, actor):
                            raise PolicyViolation(
                                RejectionReason.CANCELLATION_NOT_ALLOWED,
                                f"The {villa.cancellation_policy} cancellation policy "
                                "does not allow cancelling this booking",
                            )

                    if not await repo.update_status(booking, previous, new_status, reason):
                        raise InvalidTransition("Booking was updated by someone else, reload it")

        record_transition(new_status)
        logger.info(
            "booking_status_changed",
            booking_id=booking.id,
            villa_id=booking.villa_id,
            from_status=previous,
            to_status=new_status,
            user_id=actor.user_id,
        )
        return booking

    def _authorize_transition(self, booking: Booking, actor: Actor, new_status: str) -> None:
        if actor.is_admin or actor.user_id == booking.host_user_id:
            return
        if new_status == STATUS_CANCELLED and actor.user_id == booking.guest_user_id:
            return
        logger.warning(
            "booking_transition_forbidden",
            booking_id=booking.id,
            user_id=actor.user_id,
            to_status=new_status,
        )
        if new_status == STATUS_CONFIRMED:
            message = "Only the host can confirm this booking"
        else:
            message = "Only the guest or the host can cancel this booking"
        raise Forbidden(RejectionReason.NOT_OWNER, message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _notify(
        self, booking: Booking, guest_event: str, host_event: str, villa_event: str
    ) -> None:
        """
        One event per affected party plus one on the villa channel.
        The booking is already committed either way.
        """
        payload = BookingResponse.model_validate(booking).model_dump(mode="json")
        for recipient, event in (
            (booking.guest_user_id, guest_event),
            (booking.host_user_id, host_event),
            (None, villa_event),
        ):
            notification = BookingNotification(
                recipient_user_id=recipient, event=event, booking=payload, villa_id=booking.villa_id
            )
            try:
                await self.notification_sink.publish(notification)
            except StoreFailure as e:
                record_notification(event, sent=False)
                logger.error(
                    "booking_notification_failed",
                    booking_id=booking.id,
                    notification_event=event,
                    recipient_user_id=recipient,
                    villa_id=booking.villa_id,
                    error=e.message,
                )
            else:
                record_notification(event, sent=True)

    def _log_rejection(self, error: BookingError, request: BookingCreate, actor: Actor) -> None:
        fields = {
            "villa_id": request.villa_id,
            "guest_user_id": request.guest_user_id,
            "user_id": actor.user_id,
            "reason": error.reason.value,
        }
        if isinstance(error, StoreFailure):
            logger.error("booking_store_failure", error=error.message, **fields)
        elif isinstance(error, Forbidden):
            logger.warning("booking_forbidden", **fields)
        else:
            # Contention and bad input are normal traffic, not application errors
            logger.info("booking_rejected", **fields)


async def get_booking_for_actor(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    """Guest, host or admin of the booking may read it."""
    with store_errors("booking read"):
        booking = await BookingRepository(db).get_booking(booking_id)
    if booking is None:
        raise NotFound(RejectionReason.BOOKING_NOT_FOUND, f"Booking {booking_id} not found")
    if not actor.is_admin and actor.user_id not in (booking.guest_user_id, booking.host_user_id):
        logger.warning("booking_read_forbidden", booking_id=booking_id, user_id=actor.user_id)
        raise Forbidden(RejectionReason.NOT_OWNER, "This booking belongs to someone else")
    return booking


async def list_bookings_for_actor(
    db: AsyncSession,
    actor: Actor,
    as_host: bool = False,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Booking], int]:
    """The actor's bookings as guest, or on their villas as host. Newest first."""
    with store_errors("booking list"):
        return await BookingRepository(db).list_for_user(
            actor.user_id, as_host=as_host, status=status, page=page, page_size=page_size
        )
