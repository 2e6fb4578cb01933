# pyright: reportMissingTypeStubs=false
"""
Admin API endpoints for the commission ledger.

Platform admins review commission invoices, record provider payments and
disputes, see what each provider owes, and can trigger a reconciliation run.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.responses import (
    BookingResponse,
    CommissionInvoiceListResponse,
    CommissionInvoiceResponse,
    CommissionMismatchResponse,
    ProviderCommissionSummaryListResponse,
    ProviderCommissionSummaryResponse,
    ReconciliationResponse,
    SkippedBookingResponse,
)
from auth.dependencies import UserContext, require_admin
from core.database import get_db
from services.booking_service import BookingService
from services.commission_invoice_service import CommissionInvoiceService
from services.invoice_reconciliation_service import InvoiceReconciliationService
from shared_types.booking import ActorRole

logger = logging.getLogger(__name__)

router = APIRouter()


class MarkPaidRequest(BaseModel):
    """Request model for recording a commission payment."""
    paid_at: Optional[datetime] = None


class DisputeRequest(BaseModel):
    """Request model for disputing an invoice."""
    reason: str


class CancelRequest(BaseModel):
    """Request model for an admin cancellation."""
    reason: Optional[str] = None


@router.get("/commissions/invoices", summary="List commission invoices")
async def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    provider_slug: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> CommissionInvoiceListResponse:
    invoices = CommissionInvoiceService.list_invoices(
        db,
        status=status_filter,
        provider_slug=provider_slug,
        created_from=created_from,
        created_to=created_to,
    )
    return CommissionInvoiceListResponse(
        invoices=[CommissionInvoiceResponse.model_validate(i) for i in invoices]
    )


@router.get("/commissions/providers", summary="Commission totals per provider")
async def provider_summaries(
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ProviderCommissionSummaryListResponse:
    summaries = CommissionInvoiceService.summaries_by_provider(db)
    return ProviderCommissionSummaryListResponse(
        providers=[ProviderCommissionSummaryResponse.model_validate(s) for s in summaries]
    )


@router.get("/commissions/providers/{provider_slug}", summary="Commission totals for one provider")
async def provider_summary(
    provider_slug: str,
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ProviderCommissionSummaryResponse:
    summary = CommissionInvoiceService.provider_summary(db, provider_slug)
    return ProviderCommissionSummaryResponse.model_validate(summary)


@router.post("/commissions/invoices/{invoice_id}/paid", summary="Mark an invoice paid")
async def mark_invoice_paid(
    invoice_id: int,
    request: MarkPaidRequest,
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> CommissionInvoiceResponse:
    invoice = CommissionInvoiceService.mark_paid(db, invoice_id, paid_at=request.paid_at)
    logger.info(f"Admin {current_user.user_id} marked commission invoice {invoice_id} paid")
    return CommissionInvoiceResponse.model_validate(invoice)


@router.post("/commissions/invoices/{invoice_id}/dispute", summary="Mark an invoice disputed")
async def mark_invoice_disputed(
    invoice_id: int,
    request: DisputeRequest,
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> CommissionInvoiceResponse:
    invoice = CommissionInvoiceService.mark_disputed(db, invoice_id, request.reason)
    logger.info(f"Admin {current_user.user_id} recorded a dispute on commission invoice {invoice_id}")
    return CommissionInvoiceResponse.model_validate(invoice)


@router.post("/bookings/{booking_id}/cancel", summary="Cancel any booking")
async def cancel_booking(
    booking_id: int,
    request: CancelRequest,
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.cancel_booking(
        db, booking_id, ActorRole.ADMIN, current_user.user_id, reason=request.reason
    )
    return BookingResponse.model_validate(booking)


@router.post("/reconciliation/run", summary="Run invoice reconciliation now")
async def run_reconciliation(
    current_user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ReconciliationResponse:
    """Backfill missing invoices and audit the commission invariant."""
    report = InvoiceReconciliationService.backfill_missing_invoices(db)
    mismatches = InvoiceReconciliationService.audit_commission_invariant(db)
    logger.info(f"Admin {current_user.user_id} ran invoice reconciliation")
    return ReconciliationResponse(
        created_invoice_ids=report.created_invoice_ids,
        skipped=[SkippedBookingResponse(booking_id=b, reason=r) for b, r in report.skipped],
        mismatches=[CommissionMismatchResponse.model_validate(m) for m in mismatches],
    )
