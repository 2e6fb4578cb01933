# pyright: reportMissingTypeStubs=false
"""
Patient booking API endpoints.

Patients send inquiries to providers, follow their bookings, exchange messages
with the provider and may cancel before check-in.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    BookingListResponse,
    BookingMessageListResponse,
    BookingMessageResponse,
    BookingResponse,
    ProcedureLineModel,
)
from auth.dependencies import UserContext, require_patient
from core.database import get_db
from services.booking_service import BookingService
from shared_types.booking import ActorRole

logger = logging.getLogger(__name__)

router = APIRouter()


# Request Models
class InquiryRequest(BaseModel):
    """Request model for a new inquiry."""
    provider_slug: str = Field(..., min_length=1)
    procedures: List[ProcedureLineModel] = Field(..., min_length=1)
    message: Optional[str] = None
    medical_notes: Optional[str] = None
    preferred_dates: Optional[Dict[str, Any]] = None


class CancelRequest(BaseModel):
    """Request model for cancelling a booking."""
    reason: Optional[str] = None


class MessageRequest(BaseModel):
    """Request model for posting a message."""
    body: str


@router.post("", summary="Send an inquiry", status_code=status.HTTP_201_CREATED)
async def create_inquiry(
    request: InquiryRequest,
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingResponse:
    """Create a booking in 'inquiry' status and notify the provider."""
    booking = BookingService.create_inquiry(
        db,
        patient_user_id=current_user.user_id,
        provider_slug=request.provider_slug,
        procedures=[line.model_dump() for line in request.procedures],
        inquiry_message=request.message,
        medical_notes=request.medical_notes,
        preferred_dates=request.preferred_dates,
    )
    return BookingResponse.model_validate(booking)


@router.get("", summary="List my bookings")
async def list_bookings(
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingListResponse:
    bookings = BookingService.list_bookings_for_patient(db, current_user.user_id)
    return BookingListResponse(bookings=[BookingResponse.model_validate(b) for b in bookings])


@router.get("/{booking_id}", summary="Get one of my bookings")
async def get_booking(
    booking_id: int,
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingResponse:
    booking = BookingService.get_booking_for_patient(db, booking_id, current_user.user_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", summary="Cancel a booking")
async def cancel_booking(
    booking_id: int,
    request: CancelRequest,
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingResponse:
    """Cancel before check-in. The provider is notified."""
    booking = BookingService.cancel_booking(
        db, booking_id, ActorRole.PATIENT, current_user.user_id, reason=request.reason
    )
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/messages", summary="List booking messages")
async def list_messages(
    booking_id: int,
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingMessageListResponse:
    messages = BookingService.list_messages(db, booking_id, ActorRole.PATIENT, current_user.user_id)
    return BookingMessageListResponse(
        messages=[BookingMessageResponse.model_validate(m) for m in messages]
    )


@router.post("/{booking_id}/messages", summary="Message the provider", status_code=status.HTTP_201_CREATED)
async def post_message(
    booking_id: int,
    request: MessageRequest,
    current_user: UserContext = Depends(require_patient),
    db: Session = Depends(get_db)
) -> BookingMessageResponse:
    message = BookingService.post_message(
        db, booking_id, ActorRole.PATIENT, current_user.user_id, request.body
    )
    return BookingMessageResponse.model_validate(message)
