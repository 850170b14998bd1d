# backend/app/domain/billing/money.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(v: Any) -> Optional[Decimal]:
    if v is None:
        return None
    if isinstance(v, Decimal):
        return v
    try:
        # str() first so floats don't drag binary noise into the amount
        return Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return None


def money(v: Any) -> Decimal:
    """Quantize to cents, half-up. None counts as zero."""
    d = to_decimal(v)
    if d is None:
        return ZERO
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def total(values: Iterable[Any]) -> Decimal:
    return money(sum((to_decimal(v) or ZERO for v in values), ZERO))


def tax_on(amount: Decimal, rate_percent: Decimal) -> Decimal:
    if rate_percent <= 0 or amount == 0:
        return ZERO
    return money(amount * rate_percent / Decimal("100"))
