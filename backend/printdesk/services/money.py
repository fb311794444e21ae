from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def parse_amount_to_cents(value: Any) -> int:
    """
    Order totals arrive as decimal strings ("29.99") or numbers.

    Empty and unparsable values count as 0; the amount is only kept for bookkeeping display.
    """
    if value is None:
        return 0
    s = str(value).strip().replace(",", ".")
    if not s:
        return 0
    try:
        cents = (Decimal(s) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0
    return int(cents)


def normalize_currency(value: Any, *, default: str) -> str:
    code = str(value or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        return default
    return code


def format_amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents_abs = abs(cents)
    units = cents_abs // 100
    rest = cents_abs % 100
    return f"{sign}{units}.{rest:02d}"
