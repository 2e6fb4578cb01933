"""
Exceptions raised by the booking lifecycle and settlement services.

Business-rule rejections subclass ValueError so callers that only care about
"the request was refused" can catch them together. The API layer maps the
specific classes to HTTP status codes in main.py.
"""

from datetime import datetime
from typing import Optional


class BookingError(ValueError):
    """Base class for booking business-rule rejections."""

    error_type = "booking_error"


class BookingValidationError(BookingError):
    """Input was malformed. Raised before any state is mutated."""

    error_type = "validation_error"


class BookingNotFound(BookingError):
    """
    No booking matched the lookup.

    Deliberately does not say whether the code was wrong or belonged to a
    different provider.
    """

    error_type = "booking_not_found"

    def __init__(self, message: str = "No booking found for this code"):
        super().__init__(message)


class BookingStateError(BookingError):
    """The booking's current state does not allow the requested operation."""

    error_type = "state_error"


class IllegalTransition(BookingStateError):
    """Requested status is not reachable from the current status."""

    error_type = "illegal_transition"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot move booking from '{current_status}' to '{requested_status}'"
        )


class TerminalStateViolation(BookingStateError):
    """Booking is completed or cancelled and cannot change status any more."""

    error_type = "terminal_state"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Booking is already '{current_status}' and cannot move to '{requested_status}'"
        )


class TransitionNotPermitted(BookingStateError):
    """The edge exists but the actor's role may not trigger it."""

    error_type = "transition_not_permitted"

    def __init__(self, requested_status: str, actor_role: str):
        self.requested_status = requested_status
        self.actor_role = actor_role
        super().__init__(f"Role '{actor_role}' may not move a booking to '{requested_status}'")


class AlreadyCheckedIn(BookingStateError):
    """Booking was already settled. Carries the original check-in details for display."""

    error_type = "already_checked_in"

    def __init__(self, checked_in_at: Optional[datetime], checked_in_by: Optional[str] = None):
        self.checked_in_at = checked_in_at
        self.checked_in_by = checked_in_by
        # Import here to avoid circular import
        from utils.datetime_utils import format_checkin_timestamp
        super().__init__(
            f"This patient was already checked in on {format_checkin_timestamp(checked_in_at)}"
        )


class BookingCancelled(BookingStateError):
    """Booking has been cancelled and cannot be checked in."""

    error_type = "booking_cancelled"

    def __init__(self, message: str = "This booking has been cancelled and cannot be checked in"):
        super().__init__(message)


class InvoiceNotFound(BookingError):
    """Commission invoice does not exist."""

    error_type = "invoice_not_found"


class InvalidStateTransition(BookingStateError):
    """Commission invoice payment status change is not allowed from its current status."""

    error_type = "invalid_invoice_transition"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Invoice is '{current_status}'; only pending invoices can be marked '{requested_status}'"
        )


class SettlementIntegrityError(RuntimeError):
    """
    Settlement could not be completed atomically.

    The booking mutation has been rolled back. This is never a user error and
    is reported on the integrity alert logger.
    """

    error_type = "integrity_error"

    def __init__(self, booking_id: int, message: str):
        self.booking_id = booking_id
        super().__init__(message)
