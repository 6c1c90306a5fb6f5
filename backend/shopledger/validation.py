from __future__ import annotations

from typing import Any

from .services.errors import ValidationError

# 9,999,999.99 in minor units; guards against overflow and nonsense amounts
MAX_AMOUNT = 999_999_999
MAX_QUANTITY = 1_000_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: ints and plain digit strings only.

    Rejects bools, floats and scientific notation ("1e3").
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        body = stripped[1:] if stripped.startswith("-") else stripped
        # isdigit() also accepts superscripts and other digits int() rejects
        if not (body.isascii() and body.isdigit()):
            raise ValidationError(f"{field} must be an integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def require_positive_qty(value: Any, field: str = "qty") -> int:
    qty = coerce_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} must be <= {MAX_QUANTITY}")
    return qty


def require_amount(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """Money amount in minor units, 0..MAX_AMOUNT."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    amount = coerce_int(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} must be <= {MAX_AMOUNT}")
    return amount


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None or not str(value).strip():
        return None
    return require_text(value, field, max_length=max_length)
