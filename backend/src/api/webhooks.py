# pyright: reportMissingTypeStubs=false
"""
Webhook endpoints for external service integrations.

The payment processor calls the deposit hook once a patient's deposit has been
captured. Deliveries may be repeated; the booking service treats a repeat as a
no-op.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.responses import BookingResponse
from core import config
from core.database import get_db
from services.booking_service import BookingService

router = APIRouter()
logger = logging.getLogger(__name__)


class DepositPaidRequest(BaseModel):
    """Payment processor callback body."""
    booking_id: int
    payment_reference: str


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """Reject callbacks without the shared secret."""
    expected = config.PAYMENT_WEBHOOK_SECRET
    if not expected:
        logger.error("Payment webhook received but PAYMENT_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook not configured"
        )
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("Payment webhook rejected: bad or missing secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret"
        )


@router.post(
    "/payments/deposit",
    summary="Deposit paid callback",
    description="Called by the payment processor when a deposit has been captured",
    dependencies=[Depends(verify_webhook_secret)],
    responses={
        200: {"description": "Deposit recorded (or already recorded)"},
        401: {"description": "Invalid webhook secret"},
        404: {"description": "Booking not found"},
        409: {"description": "Booking is not awaiting a deposit"},
    },
)
async def deposit_paid(request: DepositPaidRequest, db: Session = Depends(get_db)) -> BookingResponse:
    """Move the booking to 'deposit_paid' and notify the provider."""
    logger.info(f"Deposit callback for booking {request.booking_id}")
    booking = BookingService.confirm_deposit_payment(db, request.booking_id, request.payment_reference)
    return BookingResponse.model_validate(booking)
