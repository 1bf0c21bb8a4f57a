"""Field parsers shared by the ledger services.

Each parser records a message in ``errors`` under ``field`` instead of
raising, so a service can report every problem in a payload at once.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from . import clock

KG_QUANT = Decimal("0.001")
CURRENCY_QUANT = Decimal("0.01")
RATE_QUANT = Decimal("0.0001")

# Monetary and weight comparisons all use the same band.
TOLERANCE = Decimal("0.01")
ZERO = Decimal("0")


def quantize(value: Decimal, quant: Decimal) -> Decimal:
    return value.quantize(quant, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, default: str = "0") -> Decimal:
    text = default if value in (None, "") else str(value)
    try:
        return Decimal(text)
    except (InvalidOperation, ValueError):
        return Decimal(default)


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    else:
        value = str(value).strip()
    return value or None


def name_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    label: str,
    min_length: int = 2,
    max_length: int = 100,
    required: bool = True,
) -> Optional[str]:
    text = strip_or_none(value)
    if text is None:
        if required:
            errors[field] = f"{label} is required."
        return None
    if len(text) < min_length:
        errors[field] = f"{label} must be at least {min_length} characters."
        return None
    if len(text) > max_length:
        errors[field] = f"{label} cannot exceed {max_length} characters."
        return None
    return text


def date_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    allow_future: Optional[bool] = None,
) -> Optional[date]:
    if not value:
        if required:
            errors[field] = "This field is required."
        return None

    parsed: Optional[date] = None
    if isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = date.fromisoformat(value.strip())
        except ValueError:
            errors[field] = "Invalid date. Use YYYY-MM-DD."
            return None
    else:
        errors[field] = "Invalid date."
        return None

    if allow_future is None:
        allow_future = clock.future_dates_allowed()
    if not allow_future and parsed > clock.today():
        errors[field] = "Date cannot be in the future."
        return None
    return parsed


def decimal_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    minimum: Optional[Decimal] = None,
    exclusive_minimum: Optional[Decimal] = None,
    maximum: Optional[Decimal] = None,
    quantize_to: Optional[Decimal] = None,
    default: Optional[Decimal] = None,
) -> Optional[Decimal]:
    if value in (None, ""):
        if default is not None:
            numeric = default
        elif required:
            errors[field] = "This field is required."
            return None
        else:
            return None
    elif isinstance(value, bool):
        errors[field] = "Enter a valid number."
        return None
    else:
        try:
            numeric = Decimal(str(value))
        except (InvalidOperation, ValueError):
            errors[field] = "Enter a valid number."
            return None
        if not numeric.is_finite():
            errors[field] = "Enter a valid number."
            return None

    if minimum is not None and numeric < minimum:
        errors[field] = f"Must be greater than or equal to {minimum}."
        return None
    if exclusive_minimum is not None and numeric <= exclusive_minimum:
        errors[field] = f"Must be greater than {exclusive_minimum}."
        return None
    if maximum is not None and numeric > maximum:
        errors[field] = f"Cannot exceed {maximum}."
        return None

    if quantize_to is not None:
        numeric = quantize(numeric, quantize_to)
    return numeric


def int_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    default: Optional[int] = None,
) -> Optional[int]:
    if value in (None, ""):
        if default is not None:
            return default
        if required:
            errors[field] = "This field is required."
        return None
    if isinstance(value, bool):
        errors[field] = "Enter a whole number."
        return None
    try:
        numeric = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field] = "Enter a whole number."
        return None
    if not numeric.is_finite() or numeric != numeric.to_integral_value():
        errors[field] = "Must be a whole number."
        return None

    number = int(numeric)
    if minimum is not None and number < minimum:
        errors[field] = f"Must be at least {minimum}."
        return None
    if maximum is not None and number > maximum:
        errors[field] = f"Cannot exceed {maximum}."
        return None
    return number


def id_field(value: Any, field: str, errors: Dict[str, str]) -> Optional[int]:
    if value in (None, ""):
        errors[field] = "This field is required."
        return None
    try:
        ident = int(value)
    except (TypeError, ValueError):
        errors[field] = "Invalid identifier."
        return None
    if ident <= 0 or isinstance(value, bool):
        errors[field] = "Invalid identifier."
        return None
    return ident


def within_tolerance(left: Decimal, right: Decimal) -> bool:
    return abs(Decimal(left) - Decimal(right)) <= TOLERANCE
