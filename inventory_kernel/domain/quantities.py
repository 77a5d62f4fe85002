"""
Quantity parsing for movement inputs.

All movement arithmetic is Decimal -- never float.  Values arriving from forms
or APIs (str, int, float, Decimal) are normalized here once, at the boundary.
"""

from decimal import Decimal, InvalidOperation

from inventory_kernel.exceptions import InvalidQuantityError

ZERO = Decimal("0")

# Bounds of the Numeric(38, 9) quantity column.
MAX_QUANTITY_SCALE = 9
MAX_QUANTITY = Decimal("1E29")


def parse_quantity(
    value: object,
    *,
    field: str = "quantity",
    allow_zero: bool = False,
    allow_fractional: bool = False,
) -> Decimal:
    """
    Normalize a user-supplied quantity to a Decimal.

    Preconditions:
        - ``value`` is a Decimal, int, float or numeric string.
    Postconditions:
        - Returns a finite Decimal that is > 0 (or >= 0 when ``allow_zero``),
          and integral unless ``allow_fractional``.
        - Has at most MAX_QUANTITY_SCALE decimal places and stays below
          MAX_QUANTITY, so the SQL column stores it without rounding.

    Raises:
        InvalidQuantityError: on any violation.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidQuantityError(value, field, "not a number")
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidQuantityError(value, field, "not a number") from None

    if not qty.is_finite():
        raise InvalidQuantityError(value, field, "must be finite")
    if qty < ZERO:
        raise InvalidQuantityError(value, field, "must not be negative")
    if qty == ZERO and not allow_zero:
        raise InvalidQuantityError(value, field, "must be positive")
    if not allow_fractional and qty != qty.to_integral_value():
        raise InvalidQuantityError(value, field, "must be a whole number")
    if qty.normalize().as_tuple().exponent < -MAX_QUANTITY_SCALE:
        raise InvalidQuantityError(
            value, field, f"at most {MAX_QUANTITY_SCALE} decimal places"
        )
    if qty >= MAX_QUANTITY:
        raise InvalidQuantityError(value, field, "too large")
    return qty


def is_positive_quantity(value: object) -> bool:
    """True if ``value`` reads as a finite number greater than zero."""
    if isinstance(value, bool) or value is None:
        return False
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return False
    return qty.is_finite() and qty > ZERO
