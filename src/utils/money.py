from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    s = str(value).strip()
    if not s:
        return None
    s = s.replace(",", "")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def quantize(value: Decimal, places: int) -> Decimal:
    """Round half away from zero to a fixed number of decimal places."""
    q = Decimal(1) if places == 0 else Decimal("1").scaleb(-places)
    return Decimal(value).quantize(q, rounding=ROUND_HALF_UP)


def round2(value: Decimal) -> Decimal:
    return quantize(value, 2)


def format_money(value: Any, currency: str = "USD", dash: str = "-") -> str:
    """
    - USD -> "$1,234.56"
    - BRL -> "R$ 1.234,56"
    - anything else -> "1,234.56 EUR"
    - `None` -> dash
    """
    d = to_decimal(value)
    if d is None:
        return dash
    d = round2(d)
    sign = "-" if d < 0 else ""
    body = f"{abs(d):,.2f}"
    ccy = (currency or "").upper()
    if ccy == "USD":
        return f"{sign}${body}"
    if ccy == "BRL":
        body = body.replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{sign}R$ {body}"
    return f"{sign}{body} {ccy}".strip()
