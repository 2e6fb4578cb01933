# pyright: reportMissingTypeStubs=false
"""
Provider API endpoints.

Provider staff manage incoming bookings (reply, quote, confirm, cancel) and
check patients in at the front desk by booking code.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    BookingListResponse,
    BookingMessageListResponse,
    BookingMessageResponse,
    BookingResponse,
    CheckinPreviewResponse,
    CheckinResponse,
    CommissionInvoiceListResponse,
    CommissionInvoiceResponse,
    ProcedureLineModel,
    ProviderCommissionSummaryResponse,
)
from auth.dependencies import UserContext, require_provider
from core.database import get_db
from services.booking_service import BookingService
from services.checkin_settlement_service import CheckinSettlementService
from services.commission_invoice_service import CommissionInvoiceService
from shared_types.booking import ActorRole

logger = logging.getLogger(__name__)

router = APIRouter()


# Request Models
class ReplyRequest(BaseModel):
    """Request model for a provider reply."""
    body: str


class QuoteRequest(BaseModel):
    """Request model for submitting a quote."""
    quoted_price: Decimal = Field(..., ge=0)
    estimated_dates: Optional[str] = None
    message: Optional[str] = None
    deposit_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class CancelRequest(BaseModel):
    """Request model for cancelling a booking."""
    reason: Optional[str] = None


class CheckinRequest(BaseModel):
    """Request model for checking a patient in."""
    booking_code: str
    confirmed_procedures: List[ProcedureLineModel] = Field(default_factory=list)
    confirmed_total: Decimal


@router.get("/bookings", summary="List provider bookings")
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingListResponse:
    bookings = BookingService.list_bookings_for_provider(db, current_user.provider_slug, status=status_filter)
    return BookingListResponse(bookings=[BookingResponse.model_validate(b) for b in bookings])


@router.get("/bookings/{booking_id}", summary="Get a booking")
async def get_booking(
    booking_id: int,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.get_booking_for_provider(db, booking_id, current_user.provider_slug)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/reply", summary="Reply to the patient", status_code=status.HTTP_201_CREATED)
async def reply(
    booking_id: int,
    request: ReplyRequest,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingMessageResponse:
    """Post a reply. The first reply moves an inquiry to 'provider_responded'."""
    message = BookingService.reply_as_provider(
        db, booking_id, current_user.provider_slug, current_user.user_id, request.body
    )
    return BookingMessageResponse.model_validate(message)


@router.post("/bookings/{booking_id}/quote", summary="Submit a quote")
async def submit_quote(
    booking_id: int,
    request: QuoteRequest,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.submit_quote(
        db,
        booking_id,
        current_user.provider_slug,
        request.quoted_price,
        estimated_dates=request.estimated_dates,
        message=request.message,
        deposit_percent=request.deposit_percent,
    )
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/confirm", summary="Confirm the trip")
async def confirm_trip(
    booking_id: int,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.confirm_trip(db, booking_id, current_user.provider_slug)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/cancel", summary="Cancel a booking")
async def cancel_booking(
    booking_id: int,
    request: CancelRequest,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.cancel_booking(
        db, booking_id, ActorRole.PROVIDER, current_user.provider_slug, reason=request.reason
    )
    return BookingResponse.model_validate(booking)


@router.get("/bookings/{booking_id}/messages", summary="List booking messages")
async def list_messages(
    booking_id: int,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> BookingMessageListResponse:
    messages = BookingService.list_messages(db, booking_id, ActorRole.PROVIDER, current_user.provider_slug)
    return BookingMessageListResponse(
        messages=[BookingMessageResponse.model_validate(m) for m in messages]
    )


@router.get("/checkin/{booking_code}", summary="Look up a booking code for check-in")
async def preview_checkin(
    booking_code: str,
    confirmed_total: Optional[Decimal] = Query(None),
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> CheckinPreviewResponse:
    """
    Show the confirm screen for a typed or scanned code.

    Returns 404 for codes that do not exist or belong to another provider,
    409 when the patient was already checked in or the booking was cancelled.
    """
    preview = CheckinSettlementService.preview_settlement(
        db, booking_code, current_user.provider_slug, confirmed_total=confirmed_total
    )
    return CheckinPreviewResponse(
        booking_id=preview.booking.id,
        booking_code=preview.booking.booking_code,
        patient_user_id=preview.booking.patient_user_id,
        status=preview.booking.status,
        requested_procedures=[ProcedureLineModel(**line.to_dict()) for line in preview.requested_procedures],
        suggested_total=preview.suggested_total,
        commission_rate=preview.commission_rate,
        projected_commission=preview.projected_commission,
        can_check_in=preview.can_check_in,
    )


@router.post("/checkin", summary="Check a patient in")
async def checkin(
    request: CheckinRequest,
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> CheckinResponse:
    """
    Check the patient in and settle the booking.

    The booking is completed and its commission invoice created together, or
    not at all.
    """
    result = CheckinSettlementService.settle_checkin(
        db,
        code=request.booking_code,
        provider_slug=current_user.provider_slug,
        operator_id=current_user.user_id,
        confirmed_procedures=[line.model_dump() for line in request.confirmed_procedures],
        confirmed_total=request.confirmed_total,
    )
    return CheckinResponse(
        booking=BookingResponse.model_validate(result.booking),
        invoice=CommissionInvoiceResponse.model_validate(result.invoice),
    )


@router.get("/commissions", summary="Commission summary for this provider")
async def commission_summary(
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> ProviderCommissionSummaryResponse:
    summary = CommissionInvoiceService.provider_summary(db, current_user.provider_slug)
    return ProviderCommissionSummaryResponse.model_validate(summary)


@router.get("/commissions/invoices", summary="List this provider's commission invoices")
async def list_commission_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: UserContext = Depends(require_provider),
    db: Session = Depends(get_db)
) -> CommissionInvoiceListResponse:
    invoices = CommissionInvoiceService.list_invoices(
        db, status=status_filter, provider_slug=current_user.provider_slug
    )
    return CommissionInvoiceListResponse(
        invoices=[CommissionInvoiceResponse.model_validate(i) for i in invoices]
    )
