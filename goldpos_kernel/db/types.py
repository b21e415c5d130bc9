"""
Module: goldpos_kernel.db.types
Responsibility: The sanctioned rounding helpers for weights, quantities,
    currency and percentages.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those.

Invariants enforced:
    - No floats.  All amounts are Decimal with explicit precision.
    - Weight and quantity round to 3 places, currency and percentages to 2, per-gram costs and
      rates to 6, all with banker's rounding (ROUND_HALF_EVEN).  Every service rounds
      through these helpers so that stored values agree across components.
"""

from decimal import ROUND_HALF_EVEN, Decimal

WEIGHT_DECIMAL_PLACES = 3
CURRENCY_DECIMAL_PLACES = 2
PERCENTAGE_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 6
DEFAULT_ROUNDING = ROUND_HALF_EVEN

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _quantize(value: Decimal, decimal_places: int, rounding: str) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def round_money(
    value: Decimal,
    decimal_places: int = CURRENCY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a currency value.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_EVEN).

    Returns:
        Rounded Decimal value.
    """
    return _quantize(value, decimal_places, rounding)


def round_weight(
    value: Decimal,
    decimal_places: int = WEIGHT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a gram weight (or piece quantity) to storage precision."""
    return _quantize(value, decimal_places, rounding)


round_quantity = round_weight


def round_percentage(
    value: Decimal,
    decimal_places: int = PERCENTAGE_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    return _quantize(value, decimal_places, rounding)


def percentage_of(part: Decimal, whole: Decimal) -> Decimal:
    """
    part / whole * 100 rounded to percentage precision; 0 when whole is 0.

    This is the one definition of ownership percentage used by models,
    movement snapshots and alerts.
    """
    if whole <= ZERO:
        return round_percentage(ZERO)
    return round_percentage(part / whole * HUNDRED)


def round_rate(
    value: Decimal,
    decimal_places: int = RATE_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a per-gram cost, karat rate or conversion factor."""
    return _quantize(value, decimal_places, rounding)


def fits_scale(value: Decimal, decimal_places: int) -> bool:
    """True when ``value`` carries no digits beyond ``decimal_places``."""
    return value == _quantize(value, decimal_places, DEFAULT_ROUNDING)
