"""
Check-in settlement.

When a patient arrives at the clinic, front-desk staff enter (or scan) the
booking code, pick which of the requested procedures were actually performed
and enter the billable total. Settlement then, in one transaction:

- marks the booking checked in and completed,
- records the confirmed procedures, total and derived commission,
- creates the pending commission invoice.

Either all of that is committed or none of it is. A booking can be settled at
most once, even when two operators submit the same code at the same moment.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.booking import Booking
from models.commission_invoice import CommissionInvoice
from services.booking_code_service import BookingCodeService
from services.booking_exceptions import (
    AlreadyCheckedIn,
    BookingCancelled,
    BookingNotFound,
    BookingValidationError,
    IllegalTransition,
    SettlementIntegrityError,
)
from services.booking_state_machine import BookingStateMachine
from services.commission import compute_commission, resolve_commission_rate, validate_billable_amount
from services.commission_invoice_service import CommissionInvoiceService
from services.notification_dispatcher import NotificationDispatcher, get_notification_dispatcher
from shared_types.booking import ActorRole, BookingStatus, ProcedureLine, Recipient
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

# Settlement failures that leave money records inconsistent are reported here
integrity_logger = logging.getLogger("medtour.integrity")


@dataclass
class SettlementResult:
    """Booking and invoice as committed by a successful settlement."""
    booking: Booking
    invoice: CommissionInvoice


@dataclass
class SettlementPreview:
    """Numbers for the confirm screen, before anything is written."""
    booking: Booking
    requested_procedures: List[ProcedureLine]
    suggested_total: Optional[Decimal]
    commission_rate: Decimal
    projected_commission: Optional[Decimal]
    can_check_in: bool


class CheckinSettlementService:
    """Service for checking patients in and settling their bookings."""

    @staticmethod
    def _guard_settleable(booking: Booking) -> None:
        """
        Raise if the booking was already settled or was cancelled.

        Checked-in wins over cancelled so the operator sees when and by whom
        the patient was checked in.
        """
        if booking.checked_in:
            raise AlreadyCheckedIn(booking.checked_in_at, booking.checked_in_by)
        if booking.status == BookingStatus.CANCELLED.value:
            raise BookingCancelled()

    @staticmethod
    def validate_confirmed_procedures(
        requested: Iterable[ProcedureLine],
        confirmed: Optional[Iterable[Any]]
    ) -> List[ProcedureLine]:
        """
        Validate the procedures the operator marked as performed.

        Each confirmed line must name a requested procedure (ignoring case and
        surrounding whitespace; the requested spelling is kept) with a positive
        integer quantity, and the confirmed quantities per procedure may not
        add up to more than was requested. An empty list is allowed.

        Args:
            requested: Procedures on the booking
            confirmed: ProcedureLine objects or {"name", "quantity"} dicts

        Returns:
            Normalized confirmed lines

        Raises:
            BookingValidationError: If any line fails the rules above
        """
        requested_quantities: Counter = Counter()
        canonical_names: Dict[str, str] = {}
        for line in requested:
            canonical = canonical_names.setdefault(line.name.strip().casefold(), line.name)
            requested_quantities[canonical] += line.quantity

        lines: List[ProcedureLine] = []
        for item in confirmed or []:
            if isinstance(item, ProcedureLine):
                name, quantity = item.name, item.quantity
            elif isinstance(item, dict):
                name, quantity = item.get("name"), item.get("quantity", 1)
            else:
                raise BookingValidationError(f"Invalid procedure entry: {item!r}")

            if not isinstance(name, str) or not name.strip():
                raise BookingValidationError("Each confirmed procedure needs a name")
            name = name.strip()
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise BookingValidationError(
                    f"Quantity for '{name}' must be a positive whole number"
                )
            if name.casefold() not in canonical_names:
                raise BookingValidationError(f"'{name}' was not among the requested procedures")
            name = canonical_names[name.casefold()]
            lines.append(ProcedureLine(name=name, quantity=quantity))

        confirmed_quantities: Counter = Counter()
        for line in lines:
            confirmed_quantities[line.name] += line.quantity
        for name, quantity in confirmed_quantities.items():
            if quantity > requested_quantities[name]:
                raise BookingValidationError(
                    f"Confirmed quantity for '{name}' ({quantity}) exceeds the requested "
                    f"quantity ({requested_quantities[name]})"
                )
        return lines

    @staticmethod
    def preview_settlement(
        db: Session,
        code: str,
        provider_slug: str,
        confirmed_total: Optional[Any] = None
    ) -> SettlementPreview:
        """
        Look up a booking for the confirm screen without changing anything.

        Raises:
            BookingValidationError: Malformed code or total
            BookingNotFound: No booking for this code and provider
            AlreadyCheckedIn: Booking was already settled
            BookingCancelled: Booking was cancelled
        """
        booking = BookingCodeService.lookup(db, code, provider_slug)
        CheckinSettlementService._guard_settleable(booking)

        rate = resolve_commission_rate(booking.commission_rate)
        projected = None
        if confirmed_total is not None:
            total = validate_billable_amount(confirmed_total, "confirmed_total")
            projected = compute_commission(total, rate)

        return SettlementPreview(
            booking=booking,
            requested_procedures=booking.requested_procedure_lines,
            suggested_total=booking.quoted_price,
            commission_rate=rate,
            projected_commission=projected,
            can_check_in=booking.status == BookingStatus.CONFIRMED.value,
        )

    @staticmethod
    def settle_checkin(
        db: Session,
        code: str,
        provider_slug: str,
        operator_id: str,
        confirmed_procedures: Optional[Iterable[Any]],
        confirmed_total: Any,
        notifier: Optional[NotificationDispatcher] = None
    ) -> SettlementResult:
        """
        Check a patient in and settle the booking.

        Commits on success. On any failure nothing is written: the booking
        stays exactly as it was and no invoice exists.

        Args:
            db: Database session (must not have pending changes)
            code: Booking code as typed or scanned
            provider_slug: Provider performing the check-in
            operator_id: Authenticated staff member performing it
            confirmed_procedures: Procedures actually performed
            confirmed_total: Billable total
            notifier: Notification dispatcher (defaults to the global one)

        Returns:
            SettlementResult with the committed booking and invoice

        Raises:
            BookingValidationError: Malformed code, operator, total or procedures
            BookingNotFound: No booking for this code and provider
            AlreadyCheckedIn: Booking was already settled (possibly by a concurrent request)
            BookingCancelled: Booking was cancelled
            IllegalTransition: Booking is not yet confirmed
            SettlementIntegrityError: Invoice could not be written; booking rolled back
        """
        booking = BookingCodeService.resolve(db, code, provider_slug, for_update=True)
        if booking is None:
            db.rollback()
            logger.info(f"Check-in attempted with unknown code for provider {provider_slug}")
            raise BookingNotFound()

        booking_id = booking.id
        try:
            CheckinSettlementService._guard_settleable(booking)

            if not operator_id or not str(operator_id).strip():
                raise BookingValidationError("Operator identity is required")
            total = validate_billable_amount(confirmed_total, "confirmed_total")
            lines = CheckinSettlementService.validate_confirmed_procedures(
                booking.requested_procedure_lines, confirmed_procedures
            )

            decision = BookingStateMachine.attempt_transition(
                booking, BookingStatus.COMPLETED, ActorRole.CHECK_IN
            )
            if decision.is_noop:
                # completed without checked_in: legacy data, never settled through here
                raise IllegalTransition(booking.status, BookingStatus.COMPLETED.value)

            rate = resolve_commission_rate(booking.commission_rate)
            commission_amount = compute_commission(total, rate)
        except ValueError as e:
            db.rollback()
            logger.info(f"Check-in refused for booking {booking_id}: {e}")
            raise

        now = utc_now()

        # Compare-and-swap: only the first writer finds the row still unsettled
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.checked_in.is_(False),
                Booking.status == decision.previous_status.value,
            )
            .values(
                status=decision.new_status.value,
                checked_in=True,
                checked_in_at=now,
                checked_in_by=str(operator_id).strip(),
                confirmed_procedures=[line.to_dict() for line in lines],
                confirmed_total=total,
                commission_rate=rate,
                commission_amount=commission_amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            CheckinSettlementService._raise_lost_race(db, booking)

        try:
            db.refresh(booking)
            invoice = CommissionInvoiceService.create_for_booking(db, booking)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if CommissionInvoiceService.get_invoice_for_booking(db, booking_id) is not None:
                logger.info(f"Check-in for booking {booking_id} lost to a concurrent settlement")
                CheckinSettlementService._raise_lost_race(db, booking, invoiced=True)
            CheckinSettlementService._report_integrity_failure(db, booking_id, e)
        except (SQLAlchemyError, ValueError, RuntimeError) as e:
            db.rollback()
            CheckinSettlementService._report_integrity_failure(db, booking_id, e)

        logger.info(
            f"Booking {booking_id} checked in by {booking.checked_in_by} "
            f"(provider={booking.provider_slug}, total={booking.confirmed_total}, "
            f"commission={booking.commission_amount})"
        )

        if decision.notification is not None:
            notifier = notifier or get_notification_dispatcher()
            recipient_id = (
                booking.patient_user_id
                if decision.notification.recipient == Recipient.PATIENT
                else booking.provider_slug
            )
            notifier.dispatch_best_effort(decision.notification.notification_type, booking_id, recipient_id)

        return SettlementResult(booking=booking, invoice=invoice)

    @staticmethod
    def _raise_lost_race(db: Session, booking: Booking, invoiced: bool = False) -> None:
        """
        Report why the settlement write matched nothing, from the current row.

        Ends the transaction before raising so a refused check-in never keeps
        the row locked.
        """
        db.refresh(booking)
        booking_id = booking.id
        checked_in = booking.checked_in or invoiced
        checked_in_at, checked_in_by = booking.checked_in_at, booking.checked_in_by
        status = booking.status
        db.rollback()

        if checked_in:
            logger.info(f"Check-in for booking {booking_id} lost to a concurrent settlement")
            raise AlreadyCheckedIn(checked_in_at, checked_in_by)
        if status == BookingStatus.CANCELLED.value:
            raise BookingCancelled()
        raise IllegalTransition(status, BookingStatus.COMPLETED.value)

    @staticmethod
    def _report_integrity_failure(db: Session, booking_id: int, error: Exception) -> None:
        db.rollback()
        message = f"Settlement of booking {booking_id} rolled back: invoice could not be created ({error})"
        logger.error(message)
        integrity_logger.error(message)
        raise SettlementIntegrityError(booking_id, message) from error
