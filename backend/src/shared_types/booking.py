"""
Shared types for the booking lifecycle.

Enumerations and small data classes used by the models, the services and the
API layer, kept here so none of them has to import the others.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    INQUIRY = "inquiry"
    PROVIDER_RESPONDED = "provider_responded"
    QUOTED = "quoted"
    DEPOSIT_PAID = "deposit_paid"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    """Who is asking for a status change."""

    PATIENT = "patient"
    PROVIDER = "provider"
    PAYMENT_PROCESSOR = "payment_processor"
    CHECK_IN = "check_in"
    ADMIN = "admin"


class InvoiceStatus(str, Enum):
    """Payment status of a commission invoice."""

    PENDING = "pending"
    PAID = "paid"
    DISPUTED = "disputed"


class NotificationType(str, Enum):
    """Notification types understood by the external dispatcher."""

    INQUIRY_RECEIVED = "inquiry_received"
    QUOTE_RECEIVED = "quote_received"
    DEPOSIT_PAID = "deposit_paid"
    TRIP_CONFIRMED = "trip_confirmed"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    NEW_MESSAGE = "new_message"


class Recipient(str, Enum):
    """Which side of the booking a notification goes to."""

    PATIENT = "patient"
    PROVIDER = "provider"


BOOKING_STATUS_VALUES = [s.value for s in BookingStatus]
INVOICE_STATUS_VALUES = [s.value for s in InvoiceStatus]


@dataclass(frozen=True)
class ProcedureLine:
    """
    One requested or confirmed procedure.

    Stored in the booking's JSON columns as {"name": str, "quantity": int}.
    """
    name: str
    quantity: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary format."""
        return {"name": self.name, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcedureLine":
        """Create ProcedureLine from a stored dictionary (quantity defaults to 1)."""
        quantity = data.get("quantity", 1)
        return cls(name=str(data.get("name", "")), quantity=int(quantity) if quantity is not None else 1)
