from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any


class ApiError(Exception):
    """
    Error that maps onto the API envelope.

    Rendered as {"success": false, "error": {"code", "message", "details"?}}
    with `status_code` as the HTTP status.
    """
    status_code = 400

    def __init__(self, code: str, message: str, *, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(ApiError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(ApiError):
    """404-level missing record."""
    status_code = 404


class ConflictError(ApiError):
    """409-level business rule conflict (e.g., stock changed underneath)."""
    status_code = 409


# =============================================================================
# COERCION HELPERS
# =============================================================================

def coerce_int(value: Any, field: str, *, code: str = "INVALID_INPUT") -> int:
    """
    Strict integer coercion for request input.

    Accepts ints and plain digit strings; rejects bools, decimals and
    scientific notation. Whole-number floats (e.g. 60.0 from JSON) pass.
    """
    if isinstance(value, bool):
        raise ValidationError(code, f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(code, f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(code, f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(code, f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(code, f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(code, f"{field} must be an integer")
    raise ValidationError(code, f"{field} must be an integer")


def coerce_number(value: Any, field: str, *, code: str = "INVALID_INPUT") -> float:
    """
    Numeric coercion for prices and amounts (ints, floats, numeric strings).

    NaN and infinity are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(code, f"{field} must be a number")
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            raise ValidationError(code, f"{field} must be a finite number")
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            raise ValidationError(code, f"{field} must be a number")
    else:
        raise ValidationError(code, f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(code, f"{field} must be a finite number")
    return number


def parse_bool(value: Any) -> bool:
    """Form-field boolean: true/1/yes/on (case-insensitive)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def round_half_up(value: float, digits: int = 0):
    """
    Commercial rounding (0.5 rounds away from zero), unlike built-in round().

    Returns an int when digits == 0, else a float.
    """
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)
