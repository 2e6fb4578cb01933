"""
Booking lifecycle operations before check-in.

Inquiry, provider replies, quotes, the deposit callback from the payment
processor, trip confirmation, cancellation and the booking message log. Every
status change goes through BookingStateMachine; settlement at check-in lives in
checkin_settlement_service.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from core.config import DEFAULT_DEPOSIT_PERCENT
from core.constants import MAX_MESSAGE_LENGTH, MAX_STRING_LENGTH
from core.database import rollback_on_refusal
from models.booking import Booking
from models.booking_message import BookingMessage
from services.booking_code_service import BookingCodeService
from services.booking_exceptions import BookingNotFound, BookingValidationError
from services.booking_state_machine import BookingStateMachine, TransitionDecision
from services.commission import compute_deposit, resolve_commission_rate, validate_non_negative_amount
from services.notification_dispatcher import NotificationDispatcher, get_notification_dispatcher
from shared_types.booking import ActorRole, BookingStatus, NotificationType, ProcedureLine, Recipient
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


def _clean_text(value: Optional[str], field_name: str, max_length: int, required: bool = False) -> Optional[str]:
    """Strip a free-text field; enforce presence and length."""
    text = (value or "").strip()
    if not text:
        if required:
            raise BookingValidationError(f"{field_name} is required")
        return None
    if len(text) > max_length:
        raise BookingValidationError(f"{field_name} must be at most {max_length} characters")
    return text


def _coerce_role(actor_role: Union[str, ActorRole]) -> ActorRole:
    try:
        return ActorRole(actor_role)
    except ValueError:
        raise BookingValidationError(f"Unknown actor role: {actor_role!r}")


class BookingService:
    """Service for booking operations up to check-in."""

    @staticmethod
    def validate_requested_procedures(procedures: Optional[Iterable[Any]]) -> List[ProcedureLine]:
        """
        Validate the procedures on a new inquiry.

        Accepts ProcedureLine objects, {"name", "quantity"} dicts or bare
        procedure names (quantity 1).

        Raises:
            BookingValidationError: Empty list, missing name or bad quantity
        """
        lines: List[ProcedureLine] = []
        for item in procedures or []:
            if isinstance(item, ProcedureLine):
                name, quantity = item.name, item.quantity
            elif isinstance(item, dict):
                name, quantity = item.get("name"), item.get("quantity", 1)
            elif isinstance(item, str):
                name, quantity = item, 1
            else:
                raise BookingValidationError(f"Invalid procedure entry: {item!r}")

            if not isinstance(name, str) or not name.strip():
                raise BookingValidationError("Each procedure needs a name")
            if len(name.strip()) > MAX_STRING_LENGTH:
                raise BookingValidationError(f"Procedure name must be at most {MAX_STRING_LENGTH} characters")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise BookingValidationError(f"Quantity for '{name.strip()}' must be a positive whole number")
            lines.append(ProcedureLine(name=name.strip(), quantity=quantity))

        if not lines:
            raise BookingValidationError("At least one procedure is required")
        return lines

    @staticmethod
    def _get_for_update(db: Session, booking_id: int) -> Booking:
        booking = db.query(Booking).filter(
            Booking.id == booking_id
        ).with_for_update().populate_existing().first()
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def _check_owner(booking: Booking, actor_role: ActorRole, actor_id: Optional[str]) -> None:
        """
        Ownership failures look exactly like a missing booking.

        Admins and the payment processor act on any booking.
        """
        if actor_role == ActorRole.PATIENT and booking.patient_user_id != actor_id:
            raise BookingNotFound(f"Booking {booking.id} not found")
        if actor_role == ActorRole.PROVIDER and booking.provider_slug != actor_id:
            raise BookingNotFound(f"Booking {booking.id} not found")

    @staticmethod
    def _apply(booking: Booking, decision: TransitionDecision) -> None:
        if not decision.is_noop:
            booking.status = decision.new_status.value

    @staticmethod
    def _notify(
        notifier: Optional[NotificationDispatcher],
        notification_type: NotificationType,
        booking: Booking,
        recipient: Recipient
    ) -> None:
        """Best-effort dispatch after commit."""
        notifier = notifier or get_notification_dispatcher()
        recipient_id = booking.patient_user_id if recipient == Recipient.PATIENT else booking.provider_slug
        notifier.dispatch_best_effort(notification_type, booking.id, recipient_id)

    @staticmethod
    def _notify_decision(
        notifier: Optional[NotificationDispatcher],
        decision: TransitionDecision,
        booking: Booking
    ) -> None:
        if decision.notification is not None:
            BookingService._notify(
                notifier, decision.notification.notification_type, booking, decision.notification.recipient
            )

    @staticmethod
    def create_inquiry(
        db: Session,
        patient_user_id: str,
        provider_slug: str,
        procedures: Iterable[Any],
        inquiry_message: Optional[str] = None,
        medical_notes: Optional[str] = None,
        preferred_dates: Optional[Dict[str, Any]] = None,
        commission_rate: Optional[Any] = None,
        notifier: Optional[NotificationDispatcher] = None
    ) -> Booking:
        """
        Create a new booking in 'inquiry' status.

        Args:
            db: Database session
            patient_user_id: Patient making the inquiry
            provider_slug: Provider the inquiry is sent to
            procedures: Requested procedures
            inquiry_message: Optional message to the provider
            medical_notes: Optional medical notes
            preferred_dates: Optional travel window
            commission_rate: Provider's agreed rate; platform default when omitted
            notifier: Notification dispatcher (defaults to the global one)

        Returns:
            Created booking with its booking code

        Raises:
            BookingValidationError: Missing identities or invalid procedures
        """
        patient_user_id = _clean_text(patient_user_id, "patient_user_id", MAX_STRING_LENGTH, required=True)
        provider_slug = _clean_text(provider_slug, "provider_slug", MAX_STRING_LENGTH, required=True)
        lines = BookingService.validate_requested_procedures(procedures)

        booking = Booking(
            booking_code=BookingCodeService.generate_unique_code(db, provider_slug),
            patient_user_id=patient_user_id,
            provider_slug=provider_slug,
            requested_procedures=[line.to_dict() for line in lines],
            inquiry_message=_clean_text(inquiry_message, "inquiry_message", MAX_MESSAGE_LENGTH),
            medical_notes=_clean_text(medical_notes, "medical_notes", MAX_MESSAGE_LENGTH),
            preferred_dates=preferred_dates,
            status=BookingStatus.INQUIRY.value,
            commission_rate=resolve_commission_rate(commission_rate),
            checked_in=False,
        )
        db.add(booking)
        db.commit()

        logger.info(
            f"Created booking {booking.id} ({booking.booking_code}) for provider {provider_slug}"
        )
        BookingService._notify(notifier, NotificationType.INQUIRY_RECEIVED, booking, Recipient.PROVIDER)
        return booking

    @staticmethod
    def reply_as_provider(
        db: Session,
        booking_id: int,
        provider_slug: str,
        sender_id: str,
        body: str,
        notifier: Optional[NotificationDispatcher] = None
    ) -> BookingMessage:
        """
        Append a provider reply to the message log.

        The first reply moves an inquiry to 'provider_responded'. Later replies
        are plain messages.

        Raises:
            BookingNotFound: Booking missing or owned by another provider
            BookingValidationError: Empty body
        """
        body = _clean_text(body, "Message", MAX_MESSAGE_LENGTH, required=True)
        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)
            BookingService._check_owner(booking, ActorRole.PROVIDER, provider_slug)

            decision = None
            if booking.status == BookingStatus.INQUIRY.value:
                decision = BookingStateMachine.attempt_transition(
                    booking, BookingStatus.PROVIDER_RESPONDED, ActorRole.PROVIDER
                )
                BookingService._apply(booking, decision)

        message = BookingMessage(booking_id=booking.id, sender_id=sender_id or provider_slug, body=body)
        db.add(message)
        booking.provider_message = body
        db.commit()

        if decision is not None and decision.notification is not None:
            BookingService._notify_decision(notifier, decision, booking)
        else:
            BookingService._notify(notifier, NotificationType.NEW_MESSAGE, booking, Recipient.PATIENT)
        return message

    @staticmethod
    def submit_quote(
        db: Session,
        booking_id: int,
        provider_slug: str,
        quoted_price: Any,
        estimated_dates: Optional[str] = None,
        message: Optional[str] = None,
        deposit_percent: Optional[Any] = None,
        notifier: Optional[NotificationDispatcher] = None
    ) -> Booking:
        """
        Quote a price for a booking.

        Walks inquiry -> provider_responded -> quoted one edge at a time.
        Re-quoting while still 'quoted' updates the quote.

        Args:
            db: Database session
            booking_id: Booking to quote
            provider_slug: Provider submitting the quote
            quoted_price: Quoted price
            estimated_dates: Dates the provider proposes
            message: Message shown with the quote
            deposit_percent: Share of the price collected as deposit, default DEFAULT_DEPOSIT_PERCENT

        Raises:
            BookingNotFound: Booking missing or owned by another provider
            BookingValidationError: Invalid price or deposit percent
            IllegalTransition: Deposit already paid
            TerminalStateViolation: Booking completed or cancelled
        """
        price = validate_non_negative_amount(quoted_price, "quoted_price")
        deposit = compute_deposit(
            price, DEFAULT_DEPOSIT_PERCENT if deposit_percent is None else deposit_percent
        )
        message = _clean_text(message, "message", MAX_MESSAGE_LENGTH)
        estimated_dates = _clean_text(estimated_dates, "estimated_dates", MAX_STRING_LENGTH)

        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)
            BookingService._check_owner(booking, ActorRole.PROVIDER, provider_slug)

            if booking.status == BookingStatus.INQUIRY.value:
                responded = BookingStateMachine.attempt_transition(
                    booking, BookingStatus.PROVIDER_RESPONDED, ActorRole.PROVIDER
                )
                BookingService._apply(booking, responded)
            decision = BookingStateMachine.attempt_transition(booking, BookingStatus.QUOTED, ActorRole.PROVIDER)
            BookingService._apply(booking, decision)

        booking.quoted_price = price
        booking.deposit_amount = deposit
        booking.provider_estimated_dates = estimated_dates
        if message:
            booking.provider_message = message
        db.commit()

        logger.info(f"Booking {booking.id} quoted at {price} (deposit {deposit})")
        BookingService._notify(notifier, NotificationType.QUOTE_RECEIVED, booking, Recipient.PATIENT)
        return booking

    @staticmethod
    def confirm_deposit_payment(
        db: Session,
        booking_id: int,
        payment_reference: str,
        notifier: Optional[NotificationDispatcher] = None
    ) -> Booking:
        """
        Record the deposit confirmed by the payment processor.

        Redelivery of the same callback is a no-op.

        Raises:
            BookingNotFound: Unknown booking
            BookingValidationError: Missing payment reference
            IllegalTransition / TerminalStateViolation: Booking is not awaiting a deposit
        """
        payment_reference = _clean_text(payment_reference, "payment_reference", MAX_STRING_LENGTH, required=True)
        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)

            if booking.payment_reference == payment_reference and booking.status != BookingStatus.QUOTED.value:
                logger.info(f"Duplicate deposit confirmation for booking {booking.id}, ignoring")
                db.commit()  # nothing to write, release the row lock
                return booking

            decision = BookingStateMachine.attempt_transition(
                booking, BookingStatus.DEPOSIT_PAID, ActorRole.PAYMENT_PROCESSOR
            )

        if decision.is_noop:
            logger.warning(
                f"Deposit confirmation for booking {booking.id} with a different reference ignored; "
                f"deposit already recorded"
            )
            db.commit()
            return booking

        BookingService._apply(booking, decision)
        booking.payment_reference = payment_reference
        db.commit()

        logger.info(f"Deposit recorded for booking {booking.id}")
        BookingService._notify_decision(notifier, decision, booking)
        return booking

    @staticmethod
    def confirm_trip(
        db: Session,
        booking_id: int,
        provider_slug: str,
        notifier: Optional[NotificationDispatcher] = None
    ) -> Booking:
        """
        Provider confirms the trip after the deposit is in.

        Raises:
            BookingNotFound: Booking missing or owned by another provider
            IllegalTransition / TerminalStateViolation: Deposit not paid yet, or booking closed
        """
        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)
            BookingService._check_owner(booking, ActorRole.PROVIDER, provider_slug)

            decision = BookingStateMachine.attempt_transition(booking, BookingStatus.CONFIRMED, ActorRole.PROVIDER)
        BookingService._apply(booking, decision)
        db.commit()

        if not decision.is_noop:
            logger.info(f"Booking {booking.id} confirmed by provider {provider_slug}")
        BookingService._notify_decision(notifier, decision, booking)
        return booking

    @staticmethod
    def cancel_booking(
        db: Session,
        booking_id: int,
        actor_role: Union[str, ActorRole],
        actor_id: Optional[str],
        reason: Optional[str] = None,
        notifier: Optional[NotificationDispatcher] = None
    ) -> Booking:
        """
        Cancel a booking.

        Args:
            db: Database session
            booking_id: Booking to cancel
            actor_role: patient, provider or admin
            actor_id: Patient user id or provider slug (ignored for admin)
            reason: Optional cancellation reason

        Raises:
            BookingNotFound: Booking missing or not owned by the actor
            TerminalStateViolation: Booking already completed
            TransitionNotPermitted: Role may not cancel
        """
        role = _coerce_role(actor_role)
        reason = _clean_text(reason, "reason", 1000)
        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)
            BookingService._check_owner(booking, role, actor_id)

            decision = BookingStateMachine.attempt_transition(booking, BookingStatus.CANCELLED, role)
        if decision.is_noop:
            db.commit()
            return booking

        BookingService._apply(booking, decision)
        booking.cancelled_at = utc_now()
        booking.cancellation_reason = reason
        db.commit()

        logger.info(f"Booking {booking.id} cancelled by {role.value}")
        BookingService._notify_decision(notifier, decision, booking)
        return booking

    @staticmethod
    def post_message(
        db: Session,
        booking_id: int,
        actor_role: Union[str, ActorRole],
        actor_id: str,
        body: str,
        sender_id: Optional[str] = None,
        notifier: Optional[NotificationDispatcher] = None
    ) -> BookingMessage:
        """
        Post a message on a booking's conversation.

        Provider messages go through reply_as_provider so the first one also
        moves an inquiry along. Patient messages notify the provider.

        Raises:
            BookingNotFound: Booking missing or not owned by the actor
            BookingValidationError: Empty body or unsupported role
        """
        role = _coerce_role(actor_role)
        if role == ActorRole.PROVIDER:
            return BookingService.reply_as_provider(
                db, booking_id, actor_id, sender_id or actor_id, body, notifier=notifier
            )
        if role != ActorRole.PATIENT:
            raise BookingValidationError("Only the patient or the provider can post messages")

        body = _clean_text(body, "Message", MAX_MESSAGE_LENGTH, required=True)
        with rollback_on_refusal(db):
            booking = BookingService._get_for_update(db, booking_id)
            BookingService._check_owner(booking, role, actor_id)

        message = BookingMessage(booking_id=booking.id, sender_id=sender_id or actor_id, body=body)
        db.add(message)
        db.commit()

        BookingService._notify(notifier, NotificationType.NEW_MESSAGE, booking, Recipient.PROVIDER)
        return message

    @staticmethod
    def list_messages(
        db: Session,
        booking_id: int,
        actor_role: Union[str, ActorRole],
        actor_id: Optional[str]
    ) -> List[BookingMessage]:
        """Messages on a booking, oldest first."""
        role = _coerce_role(actor_role)
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        BookingService._check_owner(booking, role, actor_id)

        return db.query(BookingMessage).filter(
            BookingMessage.booking_id == booking_id
        ).order_by(BookingMessage.created_at, BookingMessage.id).all()

    @staticmethod
    def get_booking_for_provider(db: Session, booking_id: int, provider_slug: str) -> Booking:
        """
        Raises:
            BookingNotFound: Booking missing or owned by another provider
        """
        booking = db.query(Booking).filter(
            Booking.id == booking_id,
            Booking.provider_slug == provider_slug
        ).first()
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def get_booking_for_patient(db: Session, booking_id: int, patient_user_id: str) -> Booking:
        """
        Raises:
            BookingNotFound: Booking missing or owned by another patient
        """
        booking = db.query(Booking).filter(
            Booking.id == booking_id,
            Booking.patient_user_id == patient_user_id
        ).first()
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def list_bookings_for_provider(
        db: Session,
        provider_slug: str,
        status: Optional[str] = None
    ) -> List[Booking]:
        """
        Provider's bookings, newest first, optionally filtered by status.

        Raises:
            BookingValidationError: Unknown status value
        """
        query = db.query(Booking).filter(Booking.provider_slug == provider_slug)
        if status is not None:
            try:
                status = BookingStatus(status).value
            except ValueError:
                raise BookingValidationError(f"Unknown booking status: {status!r}")
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()

    @staticmethod
    def list_bookings_for_patient(db: Session, patient_user_id: str) -> List[Booking]:
        """Patient's bookings, newest first."""
        return db.query(Booking).filter(
            Booking.patient_user_id == patient_user_id
        ).order_by(Booking.created_at.desc(), Booking.id.desc()).all()

