"""
Commission invoice model.

One invoice is created, atomically with the booking's move to 'completed', by
the check-in settlement. The amounts are a snapshot of the booking at that
moment and never change afterwards; only the payment status fields do.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint, ForeignKey, Index, Numeric, String, TIMESTAMP, event, inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from shared_types.booking import INVOICE_STATUS_VALUES, InvoiceStatus

_STATUS_LIST_SQL = ", ".join(f"'{value}'" for value in INVOICE_STATUS_VALUES)

# Columns frozen after insert
IMMUTABLE_INVOICE_COLUMNS = (
    "booking_id",
    "provider_slug",
    "procedure_total",
    "commission_rate",
    "commission_amount",
)


class CommissionInvoice(Base):
    """
    The platform's claim on a provider for a completed booking.

    Key features:
    - Exactly one invoice per booking (UNIQUE booking_id)
    - Immutable amounts (snapshot of the booking at settlement)
    - Payment status: pending -> paid | disputed
    """

    __tablename__ = "commission_invoices"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the invoice."""

    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    """The settled booking this invoice bills. At most one invoice per booking."""

    provider_slug: Mapped[str] = mapped_column(String(255), nullable=False)
    """Provider who owes the commission."""

    procedure_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    """Booking confirmed_total at settlement time."""

    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    """Commission rate applied."""

    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    """Amount owed to the platform."""

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.PENDING.value)
    """Payment status: 'pending', 'paid' or 'disputed'."""

    paid_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the provider paid. Required once status is 'paid'."""

    disputed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the invoice was disputed (if applicable)."""

    dispute_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    """Reason recorded with a dispute."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the invoice was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp of the last payment status change."""

    # Relationships
    booking = relationship("Booking", back_populates="commission_invoice")
    """Relationship to the settled Booking."""

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_LIST_SQL})", name="ck_commission_invoices_status"),
        CheckConstraint("status <> 'paid' OR paid_at IS NOT NULL", name="ck_commission_invoices_paid_at"),
        CheckConstraint("procedure_total >= 0 AND commission_amount >= 0", name="ck_commission_invoices_amounts"),
        Index("idx_commission_invoices_provider_status", "provider_slug", "status"),
        Index("idx_commission_invoices_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CommissionInvoice id={self.id} booking_id={self.booking_id} "
            f"amount={self.commission_amount} status={self.status}>"
        )


class ImmutableInvoiceError(RuntimeError):
    """Raised when code tries to change a frozen invoice column."""
    pass


@event.listens_for(CommissionInvoice, "before_update")
def _prevent_amount_changes(mapper, connection, target):  # type: ignore
    """Invoice amounts are a snapshot; only payment status fields may change."""
    state = inspect(target)
    for column_name in IMMUTABLE_INVOICE_COLUMNS:
        history = state.attrs[column_name].history
        if history.has_changes() and history.deleted:
            raise ImmutableInvoiceError(
                f"Commission invoice {target.id}: '{column_name}' cannot be changed after creation"
            )
