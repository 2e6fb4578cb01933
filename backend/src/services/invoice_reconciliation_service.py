"""
Invoice reconciliation.

Every completed, checked-in booking should have exactly one commission invoice
whose amounts match the booking. Settlement guarantees this for new check-ins.
This service finds and repairs bookings that were completed before that
guarantee existed, and audits the commission arithmetic across the ledger.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.booking import Booking
from models.commission_invoice import CommissionInvoice
from services.commission import compute_commission, to_money
from services.commission_invoice_service import CommissionInvoiceService
from shared_types.booking import BookingStatus

logger = logging.getLogger(__name__)
integrity_logger = logging.getLogger("medtour.integrity")


@dataclass
class BackfillReport:
    """Outcome of one backfill run."""
    created_invoice_ids: List[int] = field(default_factory=list)
    skipped: List[Tuple[int, str]] = field(default_factory=list)
    """(booking_id, reason) for bookings that could not be repaired automatically."""


@dataclass
class CommissionMismatch:
    """A completed booking whose commission figures do not line up."""
    booking_id: int
    provider_slug: str
    reason: str
    expected_amount: Optional[Decimal] = None
    booking_amount: Optional[Decimal] = None
    invoice_amount: Optional[Decimal] = None


class InvoiceReconciliationService:
    """Service for finding and repairing gaps between bookings and invoices."""

    @staticmethod
    def find_completed_without_invoice(db: Session) -> List[Booking]:
        """Completed bookings that have no commission invoice, oldest first."""
        return db.query(Booking).outerjoin(
            CommissionInvoice, CommissionInvoice.booking_id == Booking.id
        ).filter(
            Booking.status == BookingStatus.COMPLETED.value,
            CommissionInvoice.id.is_(None)
        ).order_by(Booking.id).all()

    @staticmethod
    def backfill_missing_invoices(db: Session) -> BackfillReport:
        """
        Create the missing invoice for each completed, checked-in booking.

        Each booking is repaired in its own savepoint so one bad row does not
        block the rest. Bookings that cannot be invoiced (not checked in, no
        confirmed total) are reported and logged on the integrity logger.

        Returns:
            BackfillReport
        """
        report = BackfillReport()
        for booking in InvoiceReconciliationService.find_completed_without_invoice(db):
            if not booking.checked_in or booking.confirmed_total is None:
                reason = "completed without a check-in record"
                report.skipped.append((booking.id, reason))
                integrity_logger.error(f"Booking {booking.id} cannot be invoiced: {reason}")
                continue

            if booking.commission_amount is None:
                reason = "checked in without a commission amount"
                report.skipped.append((booking.id, reason))
                integrity_logger.error(f"Booking {booking.id} cannot be invoiced: {reason}")
                continue

            expected = compute_commission(booking.confirmed_total, booking.commission_rate)
            if to_money(booking.commission_amount) != expected:
                logger.warning(
                    f"Booking {booking.id} commission {booking.commission_amount} differs from "
                    f"the derived {expected}; invoicing the recorded amount"
                )

            try:
                with db.begin_nested():
                    invoice = CommissionInvoiceService.create_for_booking(db, booking)
                report.created_invoice_ids.append(invoice.id)
            except (SQLAlchemyError, ValueError) as e:
                reason = f"invoice creation failed: {e}"
                report.skipped.append((booking.id, reason))
                integrity_logger.error(f"Booking {booking.id} cannot be invoiced: {reason}")

        db.commit()
        if report.created_invoice_ids or report.skipped:
            logger.info(
                f"Invoice backfill: created {len(report.created_invoice_ids)}, "
                f"skipped {len(report.skipped)}"
            )
        return report

    @staticmethod
    def audit_commission_invariant(db: Session) -> List[CommissionMismatch]:
        """
        List completed bookings whose commission figures disagree.

        Checks that commission_amount equals the derived amount for the
        booking's confirmed_total and rate, and that the invoice snapshot (if
        any) matches the booking.
        """
        rows = db.query(Booking, CommissionInvoice).outerjoin(
            CommissionInvoice, CommissionInvoice.booking_id == Booking.id
        ).filter(
            Booking.status == BookingStatus.COMPLETED.value
        ).order_by(Booking.id).all()

        mismatches: List[CommissionMismatch] = []
        for booking, invoice in rows:
            if booking.confirmed_total is None or booking.commission_amount is None:
                mismatches.append(CommissionMismatch(
                    booking_id=booking.id,
                    provider_slug=booking.provider_slug,
                    reason="missing confirmed_total or commission_amount",
                    booking_amount=booking.commission_amount,
                ))
                continue

            expected = compute_commission(booking.confirmed_total, booking.commission_rate)
            booking_amount = to_money(booking.commission_amount)
            if booking_amount != expected:
                mismatches.append(CommissionMismatch(
                    booking_id=booking.id,
                    provider_slug=booking.provider_slug,
                    reason="commission_amount does not match confirmed_total x commission_rate",
                    expected_amount=expected,
                    booking_amount=booking_amount,
                    invoice_amount=invoice.commission_amount if invoice else None,
                ))
                continue

            if invoice is not None and (
                to_money(invoice.commission_amount) != booking_amount
                or to_money(invoice.procedure_total) != to_money(booking.confirmed_total)
            ):
                mismatches.append(CommissionMismatch(
                    booking_id=booking.id,
                    provider_slug=booking.provider_slug,
                    reason="invoice snapshot does not match booking",
                    expected_amount=expected,
                    booking_amount=booking_amount,
                    invoice_amount=invoice.commission_amount,
                ))

        for mismatch in mismatches:
            integrity_logger.error(
                f"Commission mismatch on booking {mismatch.booking_id} "
                f"(provider={mismatch.provider_slug}): {mismatch.reason}"
            )
        return mismatches
