"""
Fixed-point quantity handling.

Quantities arrive from spreadsheets and forms as floats, strings or
decimals. They are normalized to Decimal at QUANTITY_DECIMAL_PLACES before
any comparison, so closure decisions use exact equality on identical scale.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from app.config import settings
from app.core.errors import ValidationError


def quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.QUANTITY_DECIMAL_PLACES)


def normalize_quantity(value: Any, field: str = "quantity") -> Decimal:
    """
    Convert a user or spreadsheet value to a non-negative fixed-point Decimal.

    Raises:
        ValidationError: value is missing, non-numeric, not finite or negative
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so 0.1 arrives as Decimal("0.1"), not its binary expansion
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")

    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if number < 0:
        raise ValidationError(f"{field} cannot be negative")

    return number.quantize(quantum(), rounding=ROUND_HALF_UP)


def normalize_optional(value: Any) -> Optional[Decimal]:
    """Normalize stored values (ERP may be NULL). Stored values are trusted non-negative."""
    if value is None:
        return None
    number = value if isinstance(value, Decimal) else Decimal(str(value))
    return number.quantize(quantum(), rounding=ROUND_HALF_UP)


def format_quantity(value: Optional[Decimal]) -> Optional[str]:
    """Render a quantity for JSON history entries without losing precision."""
    if value is None:
        return None
    return str(normalize_optional(value))


def distribute_evenly(total: Decimal, parts: int) -> List[Decimal]:
    """
    Split total into `parts` shares at the configured scale.

    Shares differ by at most one quantum; the earlier shares take the
    remainder so the shares always sum back to total exactly.
    """
    if parts <= 0:
        raise ValidationError("Cannot distribute a quantity across zero locations")

    step = quantum()
    units = int(normalize_quantity(total) / step)
    base, remainder = divmod(units, parts)
    return [
        (Decimal(base + 1) if index < remainder else Decimal(base)) * step
        for index in range(parts)
    ]
