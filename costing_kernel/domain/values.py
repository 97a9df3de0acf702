"""
Values -- Decimal precision and validation helpers.

Responsibility:
    Single home for the quantization rules applied to quantities, unit
    costs, inventory values and posted amounts, plus the input validators
    every entry point runs before touching the database.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by costing_engines and costing_services.

Invariants enforced:
    - No floats.  to_decimal() rejects float input.
    - Quantities carry at most QTY_DECIMAL_PLACES (4) places; caller input
      with more is rejected, never rounded.
    - Unit costs and inventory values are quantized to COST_DECIMAL_PLACES (9).
    - Posted amounts are rounded to the currency minor unit with
      ROUND_HALF_UP.  round_money() is the only sanctioned rounding function
      for posted amounts.

Failure modes:
    - InvalidQuantityError for non-numeric, non-finite, zero or negative
      quantities, for quantities with too many decimal places, and for
      negative costs.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from costing_kernel.exceptions import InvalidQuantityError

QTY_DECIMAL_PLACES = 4
COST_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def _quantum(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency minor unit.

    ROUND_HALF_UP rounds ties away from zero, so round_money(-x) is always
    -round_money(x) and a reversal amount mirrors its sale amount exactly.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    return value.quantize(_quantum(decimal_places), rounding=rounding)


def quantize_qty(value: Decimal, decimal_places: int = QTY_DECIMAL_PLACES) -> Decimal:
    """Quantize a stock quantity."""
    return value.quantize(_quantum(decimal_places), rounding=DEFAULT_ROUNDING)


def quantize_cost(value: Decimal) -> Decimal:
    """Quantize a unit cost or inventory value to storage precision."""
    return value.quantize(_quantum(COST_DECIMAL_PLACES), rounding=DEFAULT_ROUNDING)


def to_decimal(value: Decimal | int | str, field: str = "value") -> Decimal:
    """
    Coerce an int, str or Decimal to a finite Decimal.

    Floats are rejected outright; callers holding floats must convert via
    str() themselves so the lossy step is visible at the call site.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidQuantityError(field, value, "must be Decimal, int or str")
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantityError(field, value, "is not a number") from None
    if not result.is_finite():
        raise InvalidQuantityError(field, value, "must be finite")
    return result


def require_positive_qty(
    value: Decimal | int | str,
    field: str = "qty",
    decimal_places: int = QTY_DECIMAL_PLACES,
) -> Decimal:
    """
    Validate a quantity that must be strictly positive.

    Input with more than `decimal_places` places (e.g. 1.23456 at 4) is
    rejected rather than rounded; trailing zeros do not count.
    """
    qty = to_decimal(value, field)
    if qty <= ZERO:
        raise InvalidQuantityError(field, value)
    if qty.normalize().as_tuple().exponent < -decimal_places:
        raise InvalidQuantityError(
            field, value, f"has more than {decimal_places} decimal places"
        )
    return quantize_qty(qty, decimal_places)


def require_non_negative_cost(value: Decimal | int | str, field: str = "unit_cost") -> Decimal:
    """Validate and quantize a unit cost that must be zero or more."""
    cost = quantize_cost(to_decimal(value, field))
    if cost < ZERO:
        raise InvalidQuantityError(field, value, "must not be negative")
    return cost
