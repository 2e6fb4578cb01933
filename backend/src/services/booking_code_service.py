"""
Booking code resolution and generation.

Booking codes are typed in by front-desk staff or scanned from the patient's
QR code. Every lookup is scoped to the provider doing the lookup, so a code
belonging to another provider behaves exactly like a code that does not exist.
"""

import logging
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from core.constants import BOOKING_CODE_ALPHABET, BOOKING_CODE_LENGTH, BOOKING_CODE_MAX_ATTEMPTS
from models.booking import Booking
from services.booking_exceptions import BookingNotFound, BookingValidationError

logger = logging.getLogger(__name__)


class BookingCodeService:
    """Service for booking code lookup and generation."""

    @staticmethod
    def normalize_code(code: Optional[str]) -> str:
        """
        Normalize a typed or scanned code: trim whitespace, uppercase.

        Args:
            code: Raw code from the client

        Returns:
            Normalized code

        Raises:
            BookingValidationError: If the code is empty, the wrong length or
                contains anything other than ASCII letters and digits
        """
        if code is None:
            raise BookingValidationError("Booking code is required")

        normalized = code.strip().upper()
        if not normalized:
            raise BookingValidationError("Booking code is required")
        if len(normalized) != BOOKING_CODE_LENGTH or not (normalized.isascii() and normalized.isalnum()):
            raise BookingValidationError(
                f"Booking code must be {BOOKING_CODE_LENGTH} letters or digits"
            )
        return normalized

    @staticmethod
    def resolve(
        db: Session,
        code: str,
        provider_slug: str,
        for_update: bool = False
    ) -> Optional[Booking]:
        """
        Resolve a code to a booking owned by the given provider.

        No fuzzy matching: the normalized code must match exactly.

        Args:
            db: Database session
            code: Raw code (normalized here, callers need not do it)
            provider_slug: Provider performing the lookup
            for_update: Lock the row for the rest of the transaction

        Returns:
            Booking, or None when nothing matches for this provider

        Raises:
            BookingValidationError: If the code is malformed
        """
        normalized = BookingCodeService.normalize_code(code)
        if not provider_slug:
            return None

        query = db.query(Booking).filter(
            Booking.booking_code == normalized,
            Booking.provider_slug == provider_slug
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def lookup(db: Session, code: str, provider_slug: str) -> Booking:
        """
        Resolve a code or fail.

        Raises:
            BookingValidationError: If the code is malformed
            BookingNotFound: If the code does not resolve for this provider
        """
        booking = BookingCodeService.resolve(db, code, provider_slug)
        if booking is None:
            logger.info(f"Booking code lookup miss for provider {provider_slug}")
            raise BookingNotFound()
        return booking

    @staticmethod
    def generate_code() -> str:
        """Generate a random booking code from the unambiguous alphabet."""
        return "".join(secrets.choice(BOOKING_CODE_ALPHABET) for _ in range(BOOKING_CODE_LENGTH))

    @staticmethod
    def generate_unique_code(db: Session, provider_slug: str) -> str:
        """
        Generate a code that is not yet used by this provider.

        The (provider_slug, booking_code) unique constraint is the final
        guarantee; this check just keeps collisions from reaching it.

        Raises:
            RuntimeError: If no free code was found within the retry budget
        """
        for _ in range(BOOKING_CODE_MAX_ATTEMPTS):
            candidate = BookingCodeService.generate_code()
            existing = db.query(Booking.id).filter(
                Booking.provider_slug == provider_slug,
                Booking.booking_code == candidate
            ).first()
            if existing is None:
                return candidate

        logger.error(f"Could not generate a unique booking code for provider {provider_slug}")
        raise RuntimeError("Could not generate a unique booking code")
