"""
Services package for shared business logic.

This package contains service classes that encapsulate business logic
shared across multiple API endpoints.
"""

from .booking_code_service import BookingCodeService
from .booking_service import BookingService
from .booking_state_machine import BookingStateMachine
from .checkin_settlement_service import CheckinSettlementService
from .commission_invoice_service import CommissionInvoiceService
from .invoice_reconciliation_service import InvoiceReconciliationService

__all__ = [
    "BookingCodeService",
    "BookingService",
    "BookingStateMachine",
    "CheckinSettlementService",
    "CommissionInvoiceService",
    "InvoiceReconciliationService",
]
