"""
Commission invoice ledger.

Invoices are created only by the check-in settlement (and by the reconciliation
sweep when repairing legacy data). After creation, the only thing that changes
is the payment status: pending -> paid or pending -> disputed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.constants import MAX_DISPUTE_REASON_LENGTH
from core.database import rollback_on_refusal
from models.booking import Booking
from models.commission_invoice import CommissionInvoice
from services.booking_exceptions import (
    BookingValidationError,
    InvalidStateTransition,
    InvoiceNotFound,
)
from services.commission import resolve_commission_rate, to_money
from shared_types.booking import InvoiceStatus
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ProviderCommissionSummary:
    """Commission totals for one provider, split by payment status."""
    provider_slug: str
    pending_count: int = 0
    pending_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    paid_count: int = 0
    paid_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    disputed_count: int = 0
    disputed_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))

    @property
    def total_count(self) -> int:
        return self.pending_count + self.paid_count + self.disputed_count

    @property
    def owed_amount(self) -> Decimal:
        """Amount still owed to the platform (pending invoices only)."""
        return self.pending_amount


class CommissionInvoiceService:
    """Service for commission invoice operations."""

    @staticmethod
    def create_for_booking(db: Session, booking: Booking) -> CommissionInvoice:
        """
        Create the pending invoice for a settled booking.

        Snapshots the booking's confirmed_total, commission_rate and
        commission_amount. Adds and flushes but does not commit: the caller
        owns the transaction so the invoice and the booking's move to
        'completed' land together.

        Args:
            db: Database session
            booking: Booking with confirmed_total and commission_amount set

        Returns:
            The new CommissionInvoice (flushed, has an id)

        Raises:
            BookingValidationError: If the booking has no settled amounts
            IntegrityError: If an invoice already exists for the booking
        """
        if booking.confirmed_total is None or booking.commission_amount is None:
            raise BookingValidationError(
                f"Booking {booking.id} has no settled amounts to invoice"
            )

        invoice = CommissionInvoice(
            booking_id=booking.id,
            provider_slug=booking.provider_slug,
            procedure_total=to_money(booking.confirmed_total),
            commission_rate=resolve_commission_rate(booking.commission_rate),
            commission_amount=to_money(booking.commission_amount),
            status=InvoiceStatus.PENDING.value,
        )
        db.add(invoice)
        db.flush()
        logger.info(
            f"Created commission invoice {invoice.id} for booking {booking.id} "
            f"(provider={booking.provider_slug}, amount={invoice.commission_amount})"
        )
        return invoice

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> CommissionInvoice:
        """
        Raises:
            InvoiceNotFound: If no invoice has this id
        """
        invoice = db.query(CommissionInvoice).filter(CommissionInvoice.id == invoice_id).first()
        if invoice is None:
            raise InvoiceNotFound(f"Commission invoice {invoice_id} not found")
        return invoice

    @staticmethod
    def get_invoice_for_booking(db: Session, booking_id: int) -> Optional[CommissionInvoice]:
        """Return the booking's invoice, or None if it has not been settled."""
        return db.query(CommissionInvoice).filter(CommissionInvoice.booking_id == booking_id).first()

    @staticmethod
    def _get_for_update(db: Session, invoice_id: int) -> CommissionInvoice:
        invoice = db.query(CommissionInvoice).filter(
            CommissionInvoice.id == invoice_id
        ).with_for_update().populate_existing().first()
        if invoice is None:
            raise InvoiceNotFound(f"Commission invoice {invoice_id} not found")
        return invoice

    @staticmethod
    def mark_paid(db: Session, invoice_id: int, paid_at: Optional[datetime] = None) -> CommissionInvoice:
        """
        Record that the provider paid the commission.

        Args:
            db: Database session
            invoice_id: Invoice to update
            paid_at: Payment time, defaults to now. Naive values are taken as UTC.

        Returns:
            The updated invoice

        Raises:
            InvoiceNotFound: If the invoice does not exist
            InvalidStateTransition: If the invoice is not pending
            BookingValidationError: If paid_at is earlier than the invoice creation time
        """
        with rollback_on_refusal(db):
            invoice = CommissionInvoiceService._get_for_update(db, invoice_id)
            if invoice.status != InvoiceStatus.PENDING.value:
                raise InvalidStateTransition(invoice.status, InvoiceStatus.PAID.value)

            paid_at = ensure_utc(paid_at) if paid_at is not None else utc_now()
            created_at = ensure_utc(invoice.created_at)
            if created_at is not None and paid_at < created_at:
                raise BookingValidationError("paid_at cannot be earlier than the invoice creation time")

        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_at = paid_at
        db.commit()

        logger.info(f"Commission invoice {invoice.id} marked paid (provider={invoice.provider_slug})")
        return invoice

    @staticmethod
    def mark_disputed(db: Session, invoice_id: int, reason: Optional[str]) -> CommissionInvoice:
        """
        Record that the provider disputes the commission.

        Raises:
            InvoiceNotFound: If the invoice does not exist
            BookingValidationError: If no reason is given or it is too long
            InvalidStateTransition: If the invoice is not pending
        """
        reason = (reason or "").strip()
        if not reason:
            raise BookingValidationError("A dispute reason is required")
        if len(reason) > MAX_DISPUTE_REASON_LENGTH:
            raise BookingValidationError(
                f"Dispute reason must be at most {MAX_DISPUTE_REASON_LENGTH} characters"
            )

        with rollback_on_refusal(db):
            invoice = CommissionInvoiceService._get_for_update(db, invoice_id)
            if invoice.status != InvoiceStatus.PENDING.value:
                raise InvalidStateTransition(invoice.status, InvoiceStatus.DISPUTED.value)

        invoice.status = InvoiceStatus.DISPUTED.value
        invoice.disputed_at = utc_now()
        invoice.dispute_reason = reason
        db.commit()

        logger.warning(f"Commission invoice {invoice.id} disputed by provider {invoice.provider_slug}")
        return invoice

    @staticmethod
    def list_invoices(
        db: Session,
        status: Optional[str] = None,
        provider_slug: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None
    ) -> List[CommissionInvoice]:
        """
        List invoices, newest first.

        Args:
            db: Database session
            status: Optional payment status filter
            provider_slug: Optional provider filter
            created_from: Inclusive lower bound on created_at
            created_to: Exclusive upper bound on created_at

        Raises:
            BookingValidationError: Unknown status value
        """
        query = db.query(CommissionInvoice)
        if status is not None:
            try:
                status = InvoiceStatus(status).value
            except ValueError:
                raise BookingValidationError(f"Unknown invoice status: {status!r}")
            query = query.filter(CommissionInvoice.status == status)
        if provider_slug:
            query = query.filter(CommissionInvoice.provider_slug == provider_slug)
        if created_from is not None:
            query = query.filter(CommissionInvoice.created_at >= ensure_utc(created_from))
        if created_to is not None:
            query = query.filter(CommissionInvoice.created_at < ensure_utc(created_to))
        return query.order_by(CommissionInvoice.created_at.desc(), CommissionInvoice.id.desc()).all()

    @staticmethod
    def provider_summary(db: Session, provider_slug: str) -> ProviderCommissionSummary:
        """Totals for one provider. Providers without invoices get an all-zero summary."""
        summaries = CommissionInvoiceService._summaries(db, provider_slug=provider_slug)
        return summaries.get(provider_slug, ProviderCommissionSummary(provider_slug=provider_slug))

    @staticmethod
    def summaries_by_provider(db: Session) -> List[ProviderCommissionSummary]:
        """Payout table for admins: one row per provider with any invoice, sorted by slug."""
        summaries = CommissionInvoiceService._summaries(db)
        return [summaries[slug] for slug in sorted(summaries)]

    @staticmethod
    def _summaries(db: Session, provider_slug: Optional[str] = None) -> Dict[str, ProviderCommissionSummary]:
        query = db.query(
            CommissionInvoice.provider_slug,
            CommissionInvoice.status,
            func.count(CommissionInvoice.id),
            func.sum(CommissionInvoice.commission_amount),
        )
        if provider_slug:
            query = query.filter(CommissionInvoice.provider_slug == provider_slug)
        rows = query.group_by(CommissionInvoice.provider_slug, CommissionInvoice.status).all()

        summaries: Dict[str, ProviderCommissionSummary] = {}
        for slug, status, count, amount in rows:
            summary = summaries.setdefault(slug, ProviderCommissionSummary(provider_slug=slug))
            amount = to_money(amount if amount is not None else 0)
            if status == InvoiceStatus.PENDING.value:
                summary.pending_count, summary.pending_amount = count, amount
            elif status == InvoiceStatus.PAID.value:
                summary.paid_count, summary.paid_amount = count, amount
            elif status == InvoiceStatus.DISPUTED.value:
                summary.disputed_count, summary.disputed_amount = count, amount
        return summaries
