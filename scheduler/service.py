"""Booking scheduler: atomic creation, lifecycle transitions and listings.

All correctness comes from the datastore transaction. ``create_booking`` runs
its court lookup, conflict checks and inserts inside one transaction that
first locks the court, so concurrent requests for overlapping slots on the
same court cannot both succeed. Notifications, real-time events and refunds
run only after the transaction has committed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.config import Settings, get_settings
from common.database import read_only_session
from common.models import (
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    Court,
    Facility,
    RoleEnum,
)
from common.schemas import BookingFilters

from . import availability
from .errors import (
    BookingAlreadyCancelled,
    BookingError,
    BookingInPast,
    BookingInternalError,
    BookingNotFound,
    BookingNotPending,
    BookingNotTerminal,
    CancellationWindowClosed,
    CannotCancelCompletedBooking,
    CourtNotFound,
    CourtUnderMaintenance,
    OutsideOperatingHours,
    SlotUnavailable,
    UnauthorizedCancellation,
    UnauthorizedConfirmation,
    UnauthorizedDeletion,
)
from .events import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_CREATED,
    BookingEvent,
    EventPublisher,
    LoggingEventPublisher,
    publish_event,
)
from .hours import format_minute, to_wall_clock, wall_clock_now, within_operating_hours
from .locking import lock_court
from .notifications import LoggingNotificationDispatcher, NotificationDispatcher
from .payments import RefundProcessor, open_payment
from .pricing import resolve_price

logger = logging.getLogger(__name__)

# Name of the optional PostgreSQL exclusion constraint, see scripts/add_booking_constraints.py.
NO_OVERLAP_CONSTRAINT = "ex_bookings_no_overlap"


@dataclass
class BookingPage:
    items: List[Booking]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass
class CancellationResult:
    booking: Booking
    refund_failed: bool = False


@dataclass
class _Committed:
    """What a transaction hands to the post-commit side effects."""

    booking: Booking
    court: Court
    facility: Facility
    extras: dict[str, Any] = field(default_factory=dict)


def _is_admin(role: Any) -> bool:
    return str(getattr(role, "value", role)).upper() == RoleEnum.ADMIN.value


class BookingScheduler:
    def __init__(
        self,
        session_factory: sessionmaker,
        publisher: Optional[EventPublisher] = None,
        notifier: Optional[NotificationDispatcher] = None,
        refunds: Optional[RefundProcessor] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self.publisher = publisher or LoggingEventPublisher()
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.refunds = refunds or RefundProcessor(session_factory)
        self._clock = clock or (lambda: wall_clock_now(self.settings.local_timezone))

    def _session(self) -> Session:
        # Rows handed back to callers must stay readable after the session closes.
        return self._session_factory(expire_on_commit=False)

    def _read_session(self) -> Session:
        return read_only_session(self._session_factory)

    def _normalize(self, value: datetime) -> datetime:
        return to_wall_clock(value, self.settings.local_timezone)

    # -- availability -----------------------------------------------------

    def check_availability(self, court_id: int, start: datetime, end: datetime) -> availability.Availability:
        start, end = self._normalize(start), self._normalize(end)
        try:
            with self._read_session() as session:
                return availability.check_availability(session, court_id, start, end)
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while checking availability on court %s", court_id)
            raise BookingInternalError() from exc

    # -- creation ---------------------------------------------------------

    def create_booking(
        self,
        user_id: int,
        court_id: int,
        start: datetime,
        end: datetime,
        price: Optional[Decimal] = None,
    ) -> Booking:
        """Reserve ``court_id`` over ``[start, end)`` for ``user_id``.

        The booking starts PENDING and waits for the facility owner to
        confirm it. A payment placeholder is opened alongside it.

        Raises:
            ValueError: ``end`` is not after ``start``.
            BookingInPast: ``start`` is not after the current wall-clock time.
            CourtNotFound, OutsideOperatingHours, SlotUnavailable,
            CourtUnderMaintenance, PriceMismatch: nothing was written.
            BookingInternalError: the store failed; nothing was written.
        """
        start, end = self._normalize(start), self._normalize(end)
        if end <= start:
            raise ValueError("End time must be after start time")
        if start <= self._clock():
            logger.info("Booking rejected for user %s on court %s: %s", user_id, court_id, BookingInPast.code)
            raise BookingInPast()

        try:
            with self._session() as session, session.begin():
                committed = self._insert_booking(session, user_id, court_id, start, end, price)
        except BookingError as exc:
            logger.info("Booking rejected for user %s on court %s: %s", user_id, court_id, exc.code)
            raise
        except IntegrityError as exc:
            if NO_OVERLAP_CONSTRAINT in str(exc.orig):
                logger.info("Booking rejected by store constraint on court %s", court_id)
                raise SlotUnavailable() from exc
            logger.exception("Integrity failure while creating booking on court %s", court_id)
            raise BookingInternalError() from exc
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while creating booking on court %s", court_id)
            raise BookingInternalError() from exc

        booking = committed.booking
        logger.info(
            "Booking %s created: court=%s user=%s %s-%s price=%s",
            booking.id,
            court_id,
            user_id,
            booking.start_time.isoformat(),
            booking.end_time.isoformat(),
            booking.price,
        )
        self._notify("created", committed)
        self._publish(BOOKING_CREATED, committed)
        return booking

    def _insert_booking(
        self,
        session: Session,
        user_id: int,
        court_id: int,
        start: datetime,
        end: datetime,
        price: Optional[Decimal],
    ) -> _Committed:
        court = lock_court(session, court_id)
        if court is None or not court.is_active:
            raise CourtNotFound()

        if not within_operating_hours(start, end, court.open_minute, court.close_minute):
            raise OutsideOperatingHours(
                f"Court is open {format_minute(court.open_minute)}-{format_minute(court.close_minute)}"
            )
        if availability.overlapping_bookings(session, court_id, start, end):
            raise SlotUnavailable()
        if availability.overlapping_maintenance(session, court_id, start, end):
            raise CourtUnderMaintenance()

        amount = resolve_price(start, end, court.price_per_hour, price, self.settings.trust_client_price)
        booking = Booking(
            user_id=user_id,
            court_id=court_id,
            start_time=start,
            end_time=end,
            price=amount,
            status=BookingStatus.PENDING,
        )
        session.add(booking)
        open_payment(
            session,
            booking,
            amount,
            self.settings.payment_currency,
            captured=self.settings.payment_capture_synchronous,
        )
        session.flush()
        return _Committed(booking=booking, court=court, facility=court.facility)

    # -- lifecycle --------------------------------------------------------

    def _load_for_update(self, session: Session, booking_id: int) -> Booking:
        booking = session.scalars(select(Booking).where(Booking.id == booking_id).with_for_update()).first()
        if booking is None:
            raise BookingNotFound()
        return booking

    def confirm_booking(self, booking_id: int, acting_owner_id: int) -> Booking:
        """PENDING -> CONFIRMED, by the owner of the court's facility."""
        try:
            with self._session() as session, session.begin():
                booking = self._load_for_update(session, booking_id)
                court = booking.court
                facility = court.facility
                if facility.owner_id != acting_owner_id:
                    raise UnauthorizedConfirmation()
                if booking.status != BookingStatus.PENDING:
                    raise BookingNotPending()
                booking.status = BookingStatus.CONFIRMED
                committed = _Committed(booking=booking, court=court, facility=facility)
        except BookingError as exc:
            logger.info("Confirmation of booking %s rejected: %s", booking_id, exc.code)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while confirming booking %s", booking_id)
            raise BookingInternalError() from exc

        logger.info("Booking %s confirmed by owner %s", booking_id, acting_owner_id)
        self._publish(BOOKING_CONFIRMED, committed)
        return committed.booking

    def cancel_booking(self, booking_id: int, acting_user_id: int, acting_role: Any) -> CancellationResult:
        """PENDING|CONFIRMED -> CANCELLED, by the booker, the facility owner or an admin.

        The booker alone is held to the grace window; owners and admins may
        cancel at any time. Payments are refunded after the cancellation has
        committed, and a failed refund is reported instead of raised.
        """
        try:
            with self._session() as session, session.begin():
                booking = self._load_for_update(session, booking_id)
                court = booking.court
                facility = court.facility
                is_owner = facility.owner_id == acting_user_id
                is_admin = _is_admin(acting_role)
                is_booker = booking.user_id == acting_user_id
                if not (is_booker or is_owner or is_admin):
                    raise UnauthorizedCancellation()
                if booking.status == BookingStatus.CANCELLED:
                    raise BookingAlreadyCancelled()
                if booking.status == BookingStatus.COMPLETED:
                    raise CannotCancelCompletedBooking()

                now = self._clock()
                grace = timedelta(minutes=self.settings.cancellation_grace_minutes)
                if not (is_owner or is_admin) and booking.start_time - now < grace:
                    raise CancellationWindowClosed(
                        f"Bookings cannot be cancelled within {self.settings.cancellation_grace_minutes} minutes of start"
                    )

                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = now
                committed = _Committed(
                    booking=booking,
                    court=court,
                    facility=facility,
                    extras={"cancelled_by_booker": is_booker},
                )
        except BookingError as exc:
            logger.info("Cancellation of booking %s by user %s rejected: %s", booking_id, acting_user_id, exc.code)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while cancelling booking %s", booking_id)
            raise BookingInternalError() from exc

        logger.info("Booking %s cancelled by user %s", booking_id, acting_user_id)
        refunded = self.refunds.refund_booking(booking_id)
        if not refunded:
            logger.warning("Booking %s cancelled but its payment refund is outstanding", booking_id)
        if committed.extras["cancelled_by_booker"]:
            self._notify("cancelled", committed)
        self._publish(BOOKING_CANCELLED, committed)
        return CancellationResult(booking=committed.booking, refund_failed=not refunded)

    def delete_booking(self, booking_id: int, acting_user_id: int) -> None:
        """Remove a CANCELLED or COMPLETED booking; only its user may do so."""
        try:
            with self._session() as session, session.begin():
                booking = self._load_for_update(session, booking_id)
                if booking.user_id != acting_user_id:
                    raise UnauthorizedDeletion()
                if booking.status not in TERMINAL_STATUSES:
                    raise BookingNotTerminal()
                session.delete(booking)
        except BookingError as exc:
            logger.info("Deletion of booking %s rejected: %s", booking_id, exc.code)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while deleting booking %s", booking_id)
            raise BookingInternalError() from exc
        logger.info("Booking %s deleted by user %s", booking_id, acting_user_id)

    def complete_elapsed_bookings(self, now: Optional[datetime] = None) -> int:
        """Mark CONFIRMED bookings that have ended as COMPLETED.

        Meant to be called by an external periodic job; returns the number of
        bookings completed.
        """
        cutoff = self._normalize(now) if now is not None else self._clock()
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(Booking)
                    .where(Booking.status == BookingStatus.CONFIRMED, Booking.end_time <= cutoff)
                    .values(status=BookingStatus.COMPLETED)
                )
                completed = result.rowcount or 0
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while completing elapsed bookings")
            raise BookingInternalError() from exc
        if completed:
            logger.info("Completed %s elapsed bookings (cutoff %s)", completed, cutoff.isoformat())
        return completed

    # -- listings ---------------------------------------------------------

    def list_bookings_for_user(self, user_id: int, filters: Optional[BookingFilters] = None) -> BookingPage:
        return self._page(Booking.user_id == user_id, filters or BookingFilters())

    def list_bookings_for_owner(self, owner_id: int, filters: Optional[BookingFilters] = None) -> BookingPage:
        return self._page(Facility.owner_id == owner_id, filters or BookingFilters())

    def _page(self, scope, filters: BookingFilters) -> BookingPage:  # type: ignore[no-untyped-def]
        conditions = [scope]
        if filters.court_id is not None:
            conditions.append(Booking.court_id == filters.court_id)
        if filters.facility_id is not None:
            conditions.append(Court.facility_id == filters.facility_id)
        if filters.status is not None:
            conditions.append(Booking.status == filters.status)
        if filters.date_from is not None:
            conditions.append(Booking.start_time >= self._normalize(filters.date_from))
        if filters.date_to is not None:
            conditions.append(Booking.start_time <= self._normalize(filters.date_to))

        base = (
            select(Booking)
            .join(Court, Booking.court_id == Court.id)
            .join(Facility, Court.facility_id == Facility.id)
            .where(*conditions)
        )
        try:
            with self._read_session() as session:
                total = session.scalar(select(func.count()).select_from(base.subquery())) or 0
                items = list(
                    session.scalars(
                        base.order_by(Booking.start_time.desc(), Booking.id.desc())
                        .limit(filters.limit)
                        .offset(filters.offset)
                    )
                )
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while listing bookings")
            raise BookingInternalError() from exc
        return BookingPage(items=items, total=total, limit=filters.limit, offset=filters.offset)

    # -- post-commit side effects ----------------------------------------

    def _notify(self, kind: str, committed: _Committed) -> None:
        owner_id = committed.facility.owner_id
        try:
            if kind == "created":
                self.notifier.notify_booking_created(owner_id, committed.booking, committed.court, committed.facility)
            else:
                self.notifier.notify_booking_cancelled(owner_id, committed.booking, committed.court, committed.facility)
        except Exception:
            logger.exception("Failed to send %s notification for booking %s", kind, committed.booking.id)

    def _publish(self, name: str, committed: _Committed) -> None:
        event = BookingEvent.from_booking(
            name,
            committed.booking,
            facility_id=committed.facility.id,
            owner_id=committed.facility.owner_id,
        )
        publish_event(self.publisher, event)
