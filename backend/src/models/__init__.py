# Package initialization
# Import all models to ensure relationships are properly established
from .booking import Booking
from .booking_message import BookingMessage
from .commission_invoice import CommissionInvoice

__all__ = [
    "Booking",
    "BookingMessage",
    "CommissionInvoice",
]
