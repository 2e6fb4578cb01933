"""Application constants and configuration values."""

from decimal import Decimal

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_MESSAGE_LENGTH = 5000
MAX_DISPUTE_REASON_LENGTH = 1000

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite)
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Booking codes
# Fixed width, typed by front-desk staff or scanned from a QR code.
# 0/O and 1/I/L are left out so a code read aloud cannot be mistyped.
BOOKING_CODE_LENGTH = 8
BOOKING_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
BOOKING_CODE_MAX_ATTEMPTS = 10

# Money
MONEY_QUANTUM = Decimal("0.01")
RATE_QUANTUM = Decimal("0.0001")

# Reconciliation scheduler
RECONCILIATION_SCHEDULER_MAX_INSTANCES = 1  # Prevent overlapping sweeps
