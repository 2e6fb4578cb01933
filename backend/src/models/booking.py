"""
Booking model representing one patient-provider engagement.

A booking starts as a patient inquiry and moves through quoting, deposit and
trip confirmation until the patient is checked in at the clinic, at which point
it becomes a completed, commission-bearing record. Bookings are never deleted;
cancellation is a status.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Index, Numeric, String, Text, TIMESTAMP, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from core.config import DEFAULT_COMMISSION_RATE
from core.constants import BOOKING_CODE_LENGTH
from core.database import Base
from shared_types.booking import BOOKING_STATUS_VALUES, BookingStatus, ProcedureLine

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

_STATUS_LIST_SQL = ", ".join(f"'{value}'" for value in BOOKING_STATUS_VALUES)


class Booking(Base):
    """
    Booking entity.

    Key invariants (also enforced by CHECK constraints below):
    - checked_in implies status == 'completed' with confirmed_total and
      commission_amount set
    - confirmed_total is written once, by the check-in settlement
    - commission_amount == round(confirmed_total * commission_rate, 2)

    The status column only accepts values that are one legal step away from
    the current status (see the validator at the bottom). Use
    BookingService / CheckinSettlementService instead of writing it directly.
    """

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the booking."""

    booking_code: Mapped[str] = mapped_column(String(BOOKING_CODE_LENGTH), nullable=False)
    """Short uppercase code shown to the patient (QR or typed at the front desk). Unique per provider."""

    patient_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    """Identity of the patient who made the inquiry."""

    provider_slug: Mapped[str] = mapped_column(String(255), nullable=False)
    """Identity of the provider the booking is with."""

    requested_procedures: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    """Procedures the patient asked for: [{"name": str, "quantity": int}, ...]."""

    inquiry_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free-text message sent with the inquiry."""

    medical_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional medical notes the patient shared with the provider."""

    preferred_dates: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    """Travel window the patient prefers, e.g. {"text": "Flexible", "start": None, "end": None}."""

    provider_estimated_dates: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Dates the provider proposed with the quote."""

    provider_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Latest provider-authored reply or quote message."""

    status: Mapped[str] = mapped_column(String(50), nullable=False, default=BookingStatus.INQUIRY.value)
    """Lifecycle status. See services.booking_state_machine for the transition graph."""

    quoted_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Price quoted by the provider."""

    deposit_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Deposit requested with the quote. Collected by the external payment processor."""

    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Payment processor reference for the deposit (label only, no capture logic here)."""

    confirmed_procedures: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSONType, nullable=True)
    """Procedures actually performed, selected from requested_procedures at check-in."""

    confirmed_total: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Billable total entered at check-in."""

    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4), nullable=False, default=lambda: Decimal(DEFAULT_COMMISSION_RATE)
    )
    """Commission fraction owed to the platform (e.g. 0.15)."""

    commission_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Derived at check-in: round(confirmed_total * commission_rate, 2)."""

    checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """True once the patient has been checked in and the booking settled."""

    checked_in_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the patient was checked in."""

    checked_in_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Identity of the provider staff member who performed the check-in."""

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the booking was cancelled (if applicable)."""

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    """Optional reason given when cancelling."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the booking was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp of the last change."""

    # Relationships
    messages = relationship(
        "BookingMessage",
        back_populates="booking",
        order_by="BookingMessage.created_at",
    )
    """Message log exchanged between patient and provider, oldest first."""

    commission_invoice = relationship("CommissionInvoice", back_populates="booking", uselist=False)
    """Commission invoice created at settlement (one-to-one, if settled)."""

    __table_args__ = (
        UniqueConstraint("provider_slug", "booking_code", name="uq_bookings_provider_code"),
        CheckConstraint(f"status IN ({_STATUS_LIST_SQL})", name="ck_bookings_status"),
        CheckConstraint(
            "NOT checked_in OR (status = 'completed' "
            "AND confirmed_total IS NOT NULL AND commission_amount IS NOT NULL)",
            name="ck_bookings_checked_in_settled",
        ),
        CheckConstraint("confirmed_total IS NULL OR confirmed_total >= 0", name="ck_bookings_confirmed_total"),
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 1", name="ck_bookings_commission_rate"),
        Index("idx_bookings_provider_status", "provider_slug", "status"),
        Index("idx_bookings_patient", "patient_user_id"),
    )

    @property
    def requested_procedure_lines(self) -> List[ProcedureLine]:
        """requested_procedures as ProcedureLine objects."""
        return [ProcedureLine.from_dict(item) for item in (self.requested_procedures or [])]

    @property
    def confirmed_procedure_lines(self) -> List[ProcedureLine]:
        """confirmed_procedures as ProcedureLine objects (empty before check-in)."""
        return [ProcedureLine.from_dict(item) for item in (self.confirmed_procedures or [])]

    @validates("status")
    def _validate_status(self, key: str, value: Any) -> str:
        """Refuse status writes that are not one legal step from the current status."""
        # Import here to avoid circular import
        from services.booking_exceptions import (
            BookingValidationError, IllegalTransition, TerminalStateViolation,
        )
        from services.booking_state_machine import BookingStateMachine

        try:
            new_status = BookingStatus(value)
        except ValueError:
            raise BookingValidationError(f"Unknown booking status: {value!r}")

        current = self.status
        if current is None:
            if new_status != BookingStatus.INQUIRY:
                raise IllegalTransition("new", new_status.value)
            return new_status.value

        if current != new_status.value and BookingStateMachine.is_terminal(current):
            raise TerminalStateViolation(current, new_status.value)
        if not BookingStateMachine.is_legal_edge(current, new_status):
            raise IllegalTransition(current, new_status.value)
        return new_status.value

    def __repr__(self) -> str:
        return f"<Booking id={self.id} code={self.booking_code} provider={self.provider_slug} status={self.status}>"
