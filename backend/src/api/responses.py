"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ProcedureLineModel(BaseModel):
    """One requested or confirmed procedure."""
    name: str
    quantity: int = 1


class BookingResponse(BaseModel):
    """Response model for booking information."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_code: str
    patient_user_id: str
    provider_slug: str
    status: str
    requested_procedures: List[ProcedureLineModel]
    inquiry_message: Optional[str] = None
    medical_notes: Optional[str] = None
    preferred_dates: Optional[Dict[str, Any]] = None
    provider_estimated_dates: Optional[str] = None
    provider_message: Optional[str] = None
    quoted_price: Optional[Decimal] = None
    deposit_amount: Optional[Decimal] = None
    payment_reference: Optional[str] = None
    confirmed_procedures: Optional[List[ProcedureLineModel]] = None
    confirmed_total: Optional[Decimal] = None
    commission_rate: Decimal
    commission_amount: Optional[Decimal] = None
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookingListResponse(BaseModel):
    """Response model for listing bookings."""
    bookings: List[BookingResponse]


class BookingMessageResponse(BaseModel):
    """Response model for a booking message."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    sender_id: str
    body: str
    created_at: datetime


class BookingMessageListResponse(BaseModel):
    """Response model for a booking's message log."""
    messages: List[BookingMessageResponse]


class CommissionInvoiceResponse(BaseModel):
    """Response model for a commission invoice."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    provider_slug: str
    procedure_total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    status: str
    paid_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    created_at: datetime


class CommissionInvoiceListResponse(BaseModel):
    """Response model for listing commission invoices."""
    invoices: List[CommissionInvoiceResponse]


class ProviderCommissionSummaryResponse(BaseModel):
    """Commission totals for one provider."""
    model_config = ConfigDict(from_attributes=True)

    provider_slug: str
    pending_count: int
    pending_amount: Decimal
    paid_count: int
    paid_amount: Decimal
    disputed_count: int
    disputed_amount: Decimal
    owed_amount: Decimal
    total_count: int


class ProviderCommissionSummaryListResponse(BaseModel):
    """Admin payout table."""
    providers: List[ProviderCommissionSummaryResponse]


class CheckinPreviewResponse(BaseModel):
    """Confirm-screen data for a booking code."""
    booking_id: int
    booking_code: str
    patient_user_id: str
    status: str
    requested_procedures: List[ProcedureLineModel]
    suggested_total: Optional[Decimal] = None
    commission_rate: Decimal
    projected_commission: Optional[Decimal] = None
    can_check_in: bool


class CheckinResponse(BaseModel):
    """Response model for a successful check-in."""
    booking: BookingResponse
    invoice: CommissionInvoiceResponse


class CommissionMismatchResponse(BaseModel):
    """A completed booking whose commission figures do not line up."""
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    provider_slug: str
    reason: str
    expected_amount: Optional[Decimal] = None
    booking_amount: Optional[Decimal] = None
    invoice_amount: Optional[Decimal] = None


class SkippedBookingResponse(BaseModel):
    """A booking the backfill could not repair."""
    booking_id: int
    reason: str


class ReconciliationResponse(BaseModel):
    """Result of a manual reconciliation run."""
    created_invoice_ids: List[int]
    skipped: List[SkippedBookingResponse]
    mismatches: List[CommissionMismatchResponse]
