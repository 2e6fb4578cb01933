"""create booking, message and commission invoice tables

Revision ID: 20261001120000
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '20261001120000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

BOOKING_STATUSES = (
    "inquiry", "provider_responded", "quoted", "deposit_paid", "confirmed", "completed", "cancelled",
)
INVOICE_STATUSES = ("pending", "paid", "disputed")


def _in_list(values) -> str:
    return ", ".join(f"'{value}'" for value in values)


def upgrade() -> None:
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_code", sa.String(8), nullable=False),
        sa.Column("patient_user_id", sa.String(255), nullable=False),
        sa.Column("provider_slug", sa.String(255), nullable=False),
        sa.Column("requested_procedures", JSON_TYPE, nullable=False),
        sa.Column("inquiry_message", sa.Text(), nullable=True),
        sa.Column("medical_notes", sa.Text(), nullable=True),
        sa.Column("preferred_dates", JSON_TYPE, nullable=True),
        sa.Column("provider_estimated_dates", sa.String(255), nullable=True),
        sa.Column("provider_message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="inquiry"),
        sa.Column("quoted_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("confirmed_procedures", JSON_TYPE, nullable=True),
        sa.Column("confirmed_total", sa.Numeric(12, 2), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False, server_default="0.15"),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("checked_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("provider_slug", "booking_code", name="uq_bookings_provider_code"),
        sa.CheckConstraint(f"status IN ({_in_list(BOOKING_STATUSES)})", name="ck_bookings_status"),
        sa.CheckConstraint(
            "NOT checked_in OR (status = 'completed' "
            "AND confirmed_total IS NOT NULL AND commission_amount IS NOT NULL)",
            name="ck_bookings_checked_in_settled",
        ),
        sa.CheckConstraint("confirmed_total IS NULL OR confirmed_total >= 0", name="ck_bookings_confirmed_total"),
        sa.CheckConstraint("commission_rate >= 0 AND commission_rate <= 1", name="ck_bookings_commission_rate"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("idx_bookings_provider_status", "bookings", ["provider_slug", "status"])
    op.create_index("idx_bookings_patient", "bookings", ["patient_user_id"])

    op.create_table(
        "booking_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_booking_messages_id", "booking_messages", ["id"])
    op.create_index("idx_booking_messages_booking_created", "booking_messages", ["booking_id", "created_at"])

    # UNIQUE(booking_id) is the last line of defence against double settlement
    op.create_table(
        "commission_invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="RESTRICT"),
            nullable=False, unique=True,
        ),
        sa.Column("provider_slug", sa.String(255), nullable=False),
        sa.Column("procedure_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("dispute_reason", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(f"status IN ({_in_list(INVOICE_STATUSES)})", name="ck_commission_invoices_status"),
        sa.CheckConstraint("status <> 'paid' OR paid_at IS NOT NULL", name="ck_commission_invoices_paid_at"),
        sa.CheckConstraint(
            "procedure_total >= 0 AND commission_amount >= 0", name="ck_commission_invoices_amounts"
        ),
    )
    op.create_index("ix_commission_invoices_id", "commission_invoices", ["id"])
    op.create_index(
        "idx_commission_invoices_provider_status", "commission_invoices", ["provider_slug", "status"]
    )
    op.create_index("idx_commission_invoices_created_at", "commission_invoices", ["created_at"])


def downgrade() -> None:
    op.drop_table("commission_invoices")
    op.drop_table("booking_messages")
    op.drop_table("bookings")
