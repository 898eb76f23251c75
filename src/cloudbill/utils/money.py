"""Fixed-point money helpers. Amounts never pass through float arithmetic."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Convert an int/str/float/Decimal amount to a 2-place Decimal.

    Floats are converted through their shortest repr so 19.99 stays 19.99.
    Raises ValueError for anything that is not a finite number or is too
    large to represent at cent precision.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        # More digits than the decimal context can hold at cent precision
        raise ValueError(f"amount out of range: {value!r}") from e


def to_minor_units(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: int) -> Decimal:
    return (Decimal(int(value)) / 100).quantize(CENT)


def as_number(amount: Decimal) -> float:
    """Response-shaped amount: a plain JSON number with cent precision."""
    return float(to_decimal(amount))
