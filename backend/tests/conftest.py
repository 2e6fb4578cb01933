"""
Test configuration and shared fixtures for the booking backend test suite.

Every test gets its own file-backed SQLite database built from the models, so
tests can commit freely and multi-session (and multi-thread) scenarios see
each other's writes exactly as they would against PostgreSQL.
"""

import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import Mock

# Point the application engine at a throwaway SQLite file before anything
# imports core.database
_DEFAULT_TEST_DB = Path(tempfile.gettempdir()) / "medtour_test_default.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DEFAULT_TEST_DB}")

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from core.database import Base, build_engine
from models import Booking, BookingMessage, CommissionInvoice  # noqa: F401
from services.booking_code_service import BookingCodeService
from services.commission import compute_commission
from services.notification_dispatcher import NotificationDispatcher
from shared_types.booking import BookingStatus
from utils.datetime_utils import utc_now

# Lifecycle path walked by make_booking
_FORWARD_PATH = [
    BookingStatus.INQUIRY,
    BookingStatus.PROVIDER_RESPONDED,
    BookingStatus.QUOTED,
    BookingStatus.DEPOSIT_PAID,
    BookingStatus.CONFIRMED,
]


@pytest.fixture(scope="function")
def db_engine(tmp_path) -> Generator[Engine, None, None]:
    """Fresh SQLite database for one test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> Callable[[], Session]:
    """Session factory for tests that need more than one session."""
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session for a test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier() -> Mock:
    """Stand-in for the notification dispatcher that records calls."""
    mock = Mock(spec=NotificationDispatcher)
    mock.dispatch_best_effort.return_value = True
    return mock


@pytest.fixture
def sample_procedures() -> List[Dict[str, Any]]:
    return [
        {"name": "Dental implant", "quantity": 2},
        {"name": "Teeth whitening", "quantity": 1},
    ]


# Helper functions for creating bookings in a given status
def make_booking(
    db_session: Session,
    status: BookingStatus = BookingStatus.CONFIRMED,
    provider_slug: str = "clinic-a",
    patient_user_id: str = "patient-1",
    procedures: Optional[List[Dict[str, Any]]] = None,
    quoted_price: Optional[Decimal] = Decimal("1000.00"),
    commission_rate: Optional[Decimal] = None,
    booking_code: Optional[str] = None,
) -> Booking:
    """
    Create a booking and walk it to the requested status one edge at a time.

    The Booking model refuses status writes that skip states, so a confirmed
    booking is created as an inquiry and moved along the lifecycle path.
    Cancelled bookings are cancelled from 'quoted'; completed bookings are
    settled directly in the database with the default commission arithmetic.

    Args:
        db_session: Database session
        status: Target status
        provider_slug: Owning provider
        patient_user_id: Owning patient
        procedures: Requested procedures (defaults to one implant x2 and one whitening)
        quoted_price: Quoted price set once the booking reaches 'quoted'
        commission_rate: Commission rate (platform default when None)
        booking_code: Explicit code (generated when None)

    Returns:
        Committed Booking
    """
    status = BookingStatus(status)
    booking = Booking(
        booking_code=booking_code or BookingCodeService.generate_unique_code(db_session, provider_slug),
        patient_user_id=patient_user_id,
        provider_slug=provider_slug,
        requested_procedures=procedures if procedures is not None else [
            {"name": "Dental implant", "quantity": 2},
            {"name": "Teeth whitening", "quantity": 1},
        ],
        status=BookingStatus.INQUIRY.value,
    )
    if commission_rate is not None:
        booking.commission_rate = commission_rate
    db_session.add(booking)
    db_session.flush()

    if status == BookingStatus.CANCELLED:
        target_path = _FORWARD_PATH[:3]
    elif status == BookingStatus.COMPLETED:
        target_path = _FORWARD_PATH
    else:
        target_path = _FORWARD_PATH[:_FORWARD_PATH.index(status) + 1]

    for step in target_path[1:]:
        booking.status = step.value
        if step == BookingStatus.QUOTED:
            booking.quoted_price = quoted_price
            booking.deposit_amount = (quoted_price * Decimal("0.25")).quantize(Decimal("0.01")) if quoted_price else None
        if step == BookingStatus.DEPOSIT_PAID:
            booking.payment_reference = f"pi_{booking.booking_code}"
        db_session.flush()

    if status == BookingStatus.CANCELLED:
        booking.status = BookingStatus.CANCELLED.value
    elif status == BookingStatus.COMPLETED:
        total = quoted_price if quoted_price is not None else Decimal("0.00")
        booking.status = BookingStatus.COMPLETED.value
        booking.checked_in = True
        booking.checked_in_at = utc_now()
        booking.checked_in_by = "front-desk-1"
        booking.confirmed_procedures = list(booking.requested_procedures)
        booking.confirmed_total = total
        booking.commission_amount = compute_commission(total, booking.commission_rate)

    db_session.commit()
    return booking
