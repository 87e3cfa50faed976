from decimal import Context, Decimal, DecimalException, Inexact, InvalidOperation, Overflow

from errors import InvalidAmountError

SCALE = Decimal("0.0001")
ZERO = Decimal("0.0000")

# (2**96 - 1) / 10**4: the largest 96-bit mantissa at 4 fractional digits.
MAX_AMOUNT = Decimal("7922816251426433759354395.0335")

# Exact arithmetic only: any rounding is reported instead of applied.
_CONTEXT = Context(prec=29, traps=[Inexact, Overflow, InvalidOperation])


def to_fixed_scale(amount: Decimal) -> Decimal:
    """
    Normalize an amount to 4 fractional digits.

    Amounts that would lose precision (more than 4 significant fractional
    digits) are rejected rather than truncated, as are NaN and infinities.
    """
    if not amount.is_finite():
        raise InvalidAmountError(f"amount {amount} is not a finite number")

    try:
        scaled = amount.quantize(SCALE, context=_CONTEXT)
    except DecimalException:
        raise InvalidAmountError(f"amount {amount} has more than 4 fractional digits or is too large")

    return _bounded(scaled)


def checked_add(a: Decimal, b: Decimal) -> Decimal:
    try:
        result = _CONTEXT.add(a, b)
    except DecimalException:
        raise InvalidAmountError(f"overflow adding {b} to {a}")
    return _bounded(result)


def checked_sub(a: Decimal, b: Decimal) -> Decimal:
    try:
        result = _CONTEXT.subtract(a, b)
    except DecimalException:
        raise InvalidAmountError(f"overflow subtracting {b} from {a}")
    return _bounded(result)


def _bounded(value: Decimal) -> Decimal:
    if value.copy_abs() > MAX_AMOUNT:
        raise InvalidAmountError(f"{value} exceeds {MAX_AMOUNT}")
    return value


def format_amount(value: Decimal) -> str:
    """Format with exactly 4 fractional digits, e.g. ``2.0000``."""
    return f"{value:.4f}"
