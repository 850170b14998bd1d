# backend/app/domain/billing/proration.py
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import InvalidProrationRange
from .money import ZERO, money, to_decimal

THIRTY = Decimal("30")


class ProrationMethod(str, Enum):
    actual_days_in_month = "actual_days_in_month"
    thirty_day_month = "thirty_day_month"


def coerce_method(value: Any) -> ProrationMethod:
    if isinstance(value, ProrationMethod):
        return value
    try:
        return ProrationMethod(str(value or ProrationMethod.actual_days_in_month.value).strip().lower())
    except ValueError:
        raise InvalidProrationRange(f"unknown proration method {value!r}") from None


def month_bounds(d: date) -> tuple[date, date]:
    last = calendar.monthrange(d.year, d.month)[1]
    return date(d.year, d.month, 1), date(d.year, d.month, last)


def days_inclusive(start: date, end: date) -> int:
    return (end - start).days + 1


def is_full_month(start: date, end: date) -> bool:
    first, last = month_bounds(start)
    return start == first and end == last


def prorate(
    amount: Any,
    month: date,
    start: date,
    end: date,
    method: ProrationMethod | str = ProrationMethod.actual_days_in_month,
) -> Decimal:
    """
    Prorate a full-month `amount` to the inclusive range [start, end] clipped
    to the calendar month containing `month`.

    A range covering the whole month returns the amount exactly, for every
    method. A range that misses the month returns zero.
    """
    m = coerce_method(method)
    full = to_decimal(amount)
    if full is None or full < 0:
        raise InvalidProrationRange(f"amount must be a non-negative decimal, got {amount!r}")
    if end < start:
        raise InvalidProrationRange(
            f"range end {end.isoformat()} is before start {start.isoformat()}",
            start=start.isoformat(),
            end=end.isoformat(),
        )

    first, last = month_bounds(month)
    s = max(start, first)
    e = min(end, last)
    if e < s:
        return ZERO
    if s == first and e == last:
        return money(full)

    days = Decimal(days_inclusive(s, e))
    if m == ProrationMethod.actual_days_in_month:
        return money(full * days / Decimal(last.day))

    # fixed 30-day denominator; a 31-day range still bills no more than the month
    return money(min(full, full * days / THIRTY))


def split_by_month(start: date, end: date) -> list[tuple[date, date]]:
    if end < start:
        raise InvalidProrationRange(f"range end {end.isoformat()} is before start {start.isoformat()}")
    out: list[tuple[date, date]] = []
    cur = start
    while cur <= end:
        _, last = month_bounds(cur)
        seg_end = min(last, end)
        out.append((cur, seg_end))
        cur = seg_end + timedelta(days=1)
    return out


@dataclass(frozen=True)
class ProratedPiece:
    start: date
    end: date
    full_amount: Decimal
    amount: Decimal

    @property
    def is_prorated(self) -> bool:
        return not is_full_month(self.start, self.end)


def prorate_range(
    start: date,
    end: date,
    method: ProrationMethod | str,
    amount_for: Callable[[date], Any],
) -> list[ProratedPiece]:
    """
    Prorate a range that may span several months, one piece per calendar
    month. `amount_for(piece_start)` supplies the full monthly amount so an
    escalated rent can change between months.
    """
    pieces: list[ProratedPiece] = []
    for s, e in split_by_month(start, end):
        full = money(amount_for(s))
        pieces.append(ProratedPiece(start=s, end=e, full_amount=full, amount=prorate(full, s, s, e, method)))
    return pieces


def describe_range(start: date, end: date, *, prorated: Optional[bool] = None) -> str:
    if prorated is None:
        prorated = not is_full_month(start, end)
    if not prorated:
        return start.strftime("%b %Y")
    return f"{start.strftime('%b %d')} - {end.strftime('%b %d, %Y')} (prorated)"
