"""
Shared type definitions for the booking backend.

This module contains enums and dataclasses that are used across multiple services.
"""

from shared_types.booking import (
    ActorRole,
    BookingStatus,
    InvoiceStatus,
    NotificationType,
    ProcedureLine,
    Recipient,
)

__all__ = [
    "ActorRole",
    "BookingStatus",
    "InvoiceStatus",
    "NotificationType",
    "ProcedureLine",
    "Recipient",
]
