"""Domain errors raised by the booking scheduler.

Every error carries a stable ``code`` so callers can map each kind to a
response without parsing messages. None of these know about HTTP.
"""
from __future__ import annotations

from typing import Optional


class BookingError(Exception):
    """Base class for all scheduler failures."""

    code = "BOOKING_ERROR"
    default_message = "Booking operation failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# Creation-time failures. None of these leave a write behind.


class CourtNotFound(BookingError):
    code = "COURT_NOT_FOUND"
    default_message = "Court not found"


class OutsideOperatingHours(BookingError):
    code = "OUTSIDE_OPERATING_HOURS"
    default_message = "Booking is outside court operating hours"


class SlotUnavailable(BookingError):
    code = "SLOT_UNAVAILABLE"
    default_message = "Time slot is not available"


class CourtUnderMaintenance(BookingError):
    code = "COURT_UNDER_MAINTENANCE"
    default_message = "Court is under maintenance during this time"


class PriceMismatch(BookingError):
    code = "PRICE_MISMATCH"
    default_message = "Submitted price does not match the court rate"


class BookingInPast(BookingError):
    code = "BOOKING_IN_PAST"
    default_message = "Booking must start in the future"


# Confirmation-time failures.


class BookingNotFound(BookingError):
    code = "BOOKING_NOT_FOUND"
    default_message = "Booking not found"


class BookingNotPending(BookingError):
    code = "BOOKING_NOT_PENDING"
    default_message = "Only pending bookings can be confirmed"


class UnauthorizedConfirmation(BookingError):
    code = "UNAUTHORIZED_CONFIRMATION"
    default_message = "You are not authorized to confirm this booking"


# Cancellation-time failures.


class UnauthorizedCancellation(BookingError):
    code = "UNAUTHORIZED_CANCELLATION"
    default_message = "You are not authorized to cancel this booking"


class BookingAlreadyCancelled(BookingError):
    code = "BOOKING_ALREADY_CANCELLED"
    default_message = "Booking is already cancelled"


class CannotCancelCompletedBooking(BookingError):
    code = "CANNOT_CANCEL_COMPLETED_BOOKING"
    default_message = "Cannot cancel completed booking"


class CancellationWindowClosed(BookingError):
    code = "CANCELLATION_WINDOW_CLOSED"
    default_message = "Booking can no longer be cancelled this close to its start"


# Deletion-time failures.


class UnauthorizedDeletion(BookingError):
    code = "UNAUTHORIZED_DELETION"
    default_message = "Only the booking's user can delete it"


class BookingNotTerminal(BookingError):
    code = "BOOKING_NOT_TERMINAL"
    default_message = "Only cancelled or completed bookings can be deleted"


class BookingInternalError(BookingError):
    """Unexpected persistence failure; the transaction was rolled back."""

    code = "INTERNAL_FAILURE"
    default_message = "Booking operation failed unexpectedly"
