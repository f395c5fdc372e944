from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from ist.domain.errors import ValidationError


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else None
    text = str(value).strip()
    if not re.fullmatch(r"[+-]?\d+", text):
        return None
    return int(text)


def positive_int(value: Any, message: str) -> int:
    n = _to_int(value)
    if n is None or n <= 0:
        raise ValidationError(message)
    return n


def non_negative_int(value: Any, message: str) -> int:
    n = _to_int(value)
    if n is None or n < 0:
        raise ValidationError(message)
    return n


def non_negative_money(value: Any, message: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(message)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValidationError(message) from e
    if not amount.is_finite() or amount < 0:
        raise ValidationError(message)
    return amount


def required_text(value: Any, message: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(message)
    return text
