"""
Commission and deposit arithmetic.

All money is handled as Decimal and rounded to cents with ROUND_HALF_UP,
i.e. halves go away from zero. Amounts in this system are never negative,
so this is the same as the multiply, round, divide-by-100 rule the booking
records were historically written with. compute_commission is the only place
a commission amount is derived; settlement, the confirm-screen preview, the
reconciliation backfill and the invariant audit all call it.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from core.config import DEFAULT_COMMISSION_RATE
from core.constants import MONEY_QUANTUM, RATE_QUANTUM
from services.booking_exceptions import BookingValidationError

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number, field_name: str = "amount") -> Decimal:
    """
    Convert a number to Decimal without going through binary float noise.

    Raises:
        BookingValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise BookingValidationError(f"{field_name} must be a number")
    try:
        # str() first so 0.1 becomes Decimal("0.1"), not 0.1000000000000000055...
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise BookingValidationError(f"{field_name} must be a number, got {value!r}")
    if not result.is_finite():
        raise BookingValidationError(f"{field_name} must be a finite number")
    return result


def to_money(value: Number, field_name: str = "amount") -> Decimal:
    """Round a value to cents, halves away from zero."""
    return to_decimal(value, field_name).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def validate_non_negative_amount(value: Optional[Number], field_name: str = "amount") -> Decimal:
    """
    Validate a monetary input and return it rounded to cents.

    Raises:
        BookingValidationError: Missing, non-numeric or negative
    """
    if value is None:
        raise BookingValidationError(f"{field_name} is required")
    amount = to_decimal(value, field_name)
    if amount < 0:
        raise BookingValidationError(f"{field_name} must be >= 0")
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def validate_billable_amount(value: Optional[Number], field_name: str = "amount") -> Decimal:
    """
    Validate an amount that is billed as entered.

    Unlike validate_non_negative_amount, sub-cent input is refused instead of
    rounded, so the commission is derived from exactly the total the operator
    typed and is rounded only once.

    Raises:
        BookingValidationError: Missing, non-numeric, negative or finer than cents
    """
    if value is None:
        raise BookingValidationError(f"{field_name} is required")
    amount = to_decimal(value, field_name)
    if amount < 0:
        raise BookingValidationError(f"{field_name} must be >= 0")
    cents = amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    if cents != amount:
        raise BookingValidationError(f"{field_name} must not have more than 2 decimal places, got {value}")
    return cents


def default_commission_rate() -> Decimal:
    """The platform default commission rate from configuration."""
    return to_decimal(DEFAULT_COMMISSION_RATE, "DEFAULT_COMMISSION_RATE").quantize(RATE_QUANTUM)


def resolve_commission_rate(rate: Optional[Number]) -> Decimal:
    """
    Return the rate to bill at, falling back to the configured default.

    A missing rate never propagates into the commission arithmetic.

    Raises:
        BookingValidationError: Rate outside [0, 1]
    """
    if rate is None:
        return default_commission_rate()
    resolved = to_decimal(rate, "commission_rate")
    if resolved < 0 or resolved > 1:
        raise BookingValidationError("commission_rate must be between 0 and 1")
    return resolved.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def compute_commission(total: Number, rate: Optional[Number]) -> Decimal:
    """
    commission = round(total x rate, 2), halves away from zero.

    Examples:
        compute_commission("1000.00", "0.15") -> Decimal("150.00")
        compute_commission("100.005", "0.15") -> Decimal("15.00")   # 15.00075
        compute_commission("10.10", "0.15")   -> Decimal("1.52")    # 1.515
    """
    return to_money(to_decimal(total, "total") * resolve_commission_rate(rate), "commission_amount")


def compute_deposit(price: Number, percent: Number) -> Decimal:
    """Deposit requested with a quote: round(price x percent / 100, 2)."""
    pct = to_decimal(percent, "deposit_percent")
    if pct < 0 or pct > 100:
        raise BookingValidationError("deposit_percent must be between 0 and 100")
    return to_money(to_decimal(price, "quoted_price") * pct / Decimal(100), "deposit_amount")
