# pyright: reportMissingTypeStubs=false
"""
Medical Tourism Booking Backend API

A FastAPI application for the booking lifecycle of a medical-tourism
marketplace: patient inquiries, provider quotes, deposits, trip confirmation,
and check-in settlement with commission invoicing.

Features:
- Patient and provider booking endpoints
- Front-desk check-in by booking code
- Commission ledger for platform admins
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import admin, bookings, provider, webhooks
from core.constants import CORS_ORIGINS
from services.booking_exceptions import (
    AlreadyCheckedIn,
    BookingNotFound,
    BookingStateError,
    BookingValidationError,
    InvoiceNotFound,
    SettlementIntegrityError,
)
from services.reconciliation_scheduler import start_reconciliation_scheduler, stop_reconciliation_scheduler
from utils.datetime_utils import ensure_utc

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("Medical Tourism Booking API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Medical Tourism Booking Backend API")

    # Note: Database sessions are created fresh for each scheduler run
    try:
        await start_reconciliation_scheduler()
        logger.info("Invoice reconciliation scheduler started")
    except Exception as e:
        logger.exception(f"Failed to start reconciliation scheduler: {e}")

    yield

    try:
        await stop_reconciliation_scheduler()
        logger.info("Invoice reconciliation scheduler stopped")
    except Exception as e:
        logger.exception(f"Error stopping reconciliation scheduler: {e}")

    logger.info("Shutting down Medical Tourism Booking Backend API")


# Create FastAPI application
app = FastAPI(
    title="Medical Tourism Booking Backend",
    description="Booking lifecycle and check-in settlement for a medical-tourism marketplace",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    bookings.router,
    prefix="/api/bookings",
    tags=["bookings"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    provider.router,
    prefix="/api/provider",
    tags=["provider"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    admin.router,
    prefix="/api/admin",
    tags=["admin"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    webhooks.router,
    prefix="/api/webhooks",
    tags=["webhooks"],
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Medical Tourism Booking Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(SettlementIntegrityError)
async def settlement_integrity_handler(request: Request, exc: SettlementIntegrityError):
    """Settlement was rolled back; already logged on the integrity logger."""
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Check-in could not be completed. Nothing was saved; please try again.",
            "type": exc.error_type,
        },
    )


@app.exception_handler(BookingValidationError)
async def booking_validation_handler(request: Request, exc: BookingValidationError):
    """Handle malformed input rejected by the booking services."""
    logger.info(f"Booking validation error: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": exc.error_type},
    )


@app.exception_handler(BookingNotFound)
async def booking_not_found_handler(request: Request, exc: BookingNotFound):
    """Handle unknown booking ids and codes."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc), "type": exc.error_type},
    )


@app.exception_handler(InvoiceNotFound)
async def invoice_not_found_handler(request: Request, exc: InvoiceNotFound):
    """Handle unknown commission invoice ids."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc), "type": exc.error_type},
    )


@app.exception_handler(BookingStateError)
async def booking_state_handler(request: Request, exc: BookingStateError):
    """Handle requests the booking's current state does not allow."""
    logger.info(f"Booking state conflict: {exc}")
    content = {"detail": str(exc), "type": exc.error_type}
    if isinstance(exc, AlreadyCheckedIn):
        content["checked_in_at"] = ensure_utc(exc.checked_in_at).isoformat() if exc.checked_in_at else None
        content["checked_in_by"] = exc.checked_in_by
    return JSONResponse(status_code=409, content=content)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )
