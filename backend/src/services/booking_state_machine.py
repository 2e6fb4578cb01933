"""
Status transition authority for bookings.

Every booking status change goes through BookingStateMachine.attempt_transition.
It is a pure decision function: it looks at the booking's current status, the
requested status and who is asking, and either raises or returns the new status
together with the notification that should follow. Persisting the change and
dispatching the notification are the caller's job.

    inquiry -> provider_responded -> quoted -> deposit_paid -> confirmed -> completed

cancelled is reachable from every non-terminal status. completed and cancelled
are terminal.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Union

from services.booking_exceptions import (
    BookingValidationError,
    IllegalTransition,
    TerminalStateViolation,
    TransitionNotPermitted,
)
from shared_types.booking import ActorRole, BookingStatus, NotificationType, Recipient


TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

_FORWARD_EDGES: Dict[BookingStatus, BookingStatus] = {
    BookingStatus.INQUIRY: BookingStatus.PROVIDER_RESPONDED,
    BookingStatus.PROVIDER_RESPONDED: BookingStatus.QUOTED,
    BookingStatus.QUOTED: BookingStatus.DEPOSIT_PAID,
    BookingStatus.DEPOSIT_PAID: BookingStatus.CONFIRMED,
    BookingStatus.CONFIRMED: BookingStatus.COMPLETED,
}

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    status: (
        frozenset()
        if status in TERMINAL_STATUSES
        else frozenset({_FORWARD_EDGES[status], BookingStatus.CANCELLED})
    )
    for status in BookingStatus
}

# Roles allowed to request each target status
ALLOWED_ACTORS: Dict[BookingStatus, FrozenSet[ActorRole]] = {
    BookingStatus.PROVIDER_RESPONDED: frozenset({ActorRole.PROVIDER, ActorRole.ADMIN}),
    BookingStatus.QUOTED: frozenset({ActorRole.PROVIDER, ActorRole.ADMIN}),
    BookingStatus.DEPOSIT_PAID: frozenset({ActorRole.PAYMENT_PROCESSOR, ActorRole.ADMIN}),
    BookingStatus.CONFIRMED: frozenset({ActorRole.PROVIDER, ActorRole.ADMIN}),
    BookingStatus.COMPLETED: frozenset({ActorRole.CHECK_IN}),
    BookingStatus.CANCELLED: frozenset({ActorRole.PATIENT, ActorRole.PROVIDER, ActorRole.ADMIN}),
}

_NOTIFICATIONS: Dict[BookingStatus, tuple[NotificationType, Recipient]] = {
    BookingStatus.PROVIDER_RESPONDED: (NotificationType.NEW_MESSAGE, Recipient.PATIENT),
    BookingStatus.QUOTED: (NotificationType.QUOTE_RECEIVED, Recipient.PATIENT),
    BookingStatus.DEPOSIT_PAID: (NotificationType.DEPOSIT_PAID, Recipient.PROVIDER),
    BookingStatus.CONFIRMED: (NotificationType.TRIP_CONFIRMED, Recipient.PATIENT),
    BookingStatus.COMPLETED: (NotificationType.BOOKING_COMPLETED, Recipient.PATIENT),
}


@dataclass(frozen=True)
class NotificationInstruction:
    """Which notification to send after a transition is persisted, and to which side."""
    notification_type: NotificationType
    recipient: Recipient


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of an accepted transition request."""
    previous_status: BookingStatus
    new_status: BookingStatus
    is_noop: bool
    notification: Optional[NotificationInstruction] = None


def _coerce_status(value: Union[str, BookingStatus]) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise BookingValidationError(f"Unknown booking status: {value!r}")


def _coerce_role(value: Union[str, ActorRole]) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError:
        raise BookingValidationError(f"Unknown actor role: {value!r}")


class BookingStateMachine:
    """Legal booking status transitions and who may trigger them."""

    @staticmethod
    def is_terminal(status: Union[str, BookingStatus]) -> bool:
        """Return True for completed and cancelled."""
        return _coerce_status(status) in TERMINAL_STATUSES

    @staticmethod
    def legal_targets(status: Union[str, BookingStatus]) -> FrozenSet[BookingStatus]:
        """Statuses directly reachable from the given status."""
        return TRANSITIONS[_coerce_status(status)]

    @staticmethod
    def is_legal_edge(
        current_status: Union[str, BookingStatus],
        requested_status: Union[str, BookingStatus]
    ) -> bool:
        """
        True when requested_status equals current_status or is an out-edge of it.

        Ignores actor roles. Used by the Booking model to refuse direct status
        writes that would skip states.
        """
        current = _coerce_status(current_status)
        requested = _coerce_status(requested_status)
        return requested == current or requested in TRANSITIONS[current]

    @staticmethod
    def attempt_transition(
        booking: Any,
        requested_status: Union[str, BookingStatus],
        actor_role: Union[str, ActorRole]
    ) -> TransitionDecision:
        """
        Decide whether a booking may move to requested_status.

        Args:
            booking: Anything with a ``status`` attribute (normally a Booking row)
            requested_status: Target status
            actor_role: Role of the caller requesting the change

        Returns:
            TransitionDecision. Requesting the current status is an idempotent
            no-op and carries no notification.

        Raises:
            BookingValidationError: Unknown status or role string
            TerminalStateViolation: Booking is completed or cancelled
            IllegalTransition: Requested status is not reachable in one step
            TransitionNotPermitted: Actor role may not trigger this edge
        """
        current = _coerce_status(booking.status)
        requested = _coerce_status(requested_status)
        role = _coerce_role(actor_role)

        if requested == current:
            return TransitionDecision(previous_status=current, new_status=current, is_noop=True)

        if current in TERMINAL_STATUSES:
            raise TerminalStateViolation(current.value, requested.value)

        if requested not in TRANSITIONS[current]:
            raise IllegalTransition(current.value, requested.value)

        if role not in ALLOWED_ACTORS[requested]:
            raise TransitionNotPermitted(requested.value, role.value)

        return TransitionDecision(
            previous_status=current,
            new_status=requested,
            is_noop=False,
            notification=BookingStateMachine._notification_for(requested, role),
        )

    @staticmethod
    def _notification_for(requested: BookingStatus, role: ActorRole) -> Optional[NotificationInstruction]:
        if requested == BookingStatus.CANCELLED:
            # Tell the other party
            recipient = Recipient.PROVIDER if role == ActorRole.PATIENT else Recipient.PATIENT
            return NotificationInstruction(NotificationType.BOOKING_CANCELLED, recipient)

        entry = _NOTIFICATIONS.get(requested)
        if entry is None:
            return None
        return NotificationInstruction(entry[0], entry[1])
