"""
Datetime utilities for consistent timezone handling across the application.

This module provides utilities to ensure all datetime operations use timezone-aware
datetimes consistently. All timestamps are stored and compared in UTC; providers
and patients see local times rendered by the frontend.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime with UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in UTC.

    SQLite drops tzinfo on read, so values coming back from it are naive.
    Naive values are assumed to already be UTC.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_checkin_timestamp(dt: Optional[datetime]) -> str:
    """
    Format a check-in timestamp for operator-facing messages.

    Formats as "Mar 05, 2026 14:30 UTC". Returns "-" when missing.
    """
    normalized = ensure_utc(dt)
    if normalized is None:
        return "-"
    return normalized.strftime("%b %d, %Y %H:%M UTC")
