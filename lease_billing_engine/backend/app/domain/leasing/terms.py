# backend/app/domain/leasing/terms.py
from __future__ import annotations

import bisect
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from ..billing.money import money, to_decimal
from ..errors import InvalidTerm, NoTermFound, OverlappingTerms

ESCALATION_TYPES = {"none", "percentage", "fixed"}


@dataclass(frozen=True)
class TermSpan:
    """
    A term and its effective half-open interval [start, stop).

    stop is the explicit effective_to, or the next term's effective_from for
    an open-ended term that has been superseded, or None (unbounded).
    """

    term: Any
    start: date
    stop: Optional[date]

    def contains(self, on: date) -> bool:
        return self.start <= on and (self.stop is None or on < self.stop)

    @property
    def last_day(self) -> Optional[date]:
        return None if self.stop is None else self.stop - timedelta(days=1)


@dataclass(frozen=True)
class TermSegment:
    span: TermSpan
    start: date  # inclusive
    end: date  # inclusive

    @property
    def term(self) -> Any:
        return self.span.term


def _validate_term(t: Any) -> None:
    rent = to_decimal(getattr(t, "monthly_rent", None))
    if rent is None or rent < 0:
        raise InvalidTerm("invalid_term_amount", f"term {getattr(t, 'id', '?')} has invalid monthly_rent {rent}")
    for f in ("security_deposit", "maintenance_charge", "other_fixed_charge"):
        v = to_decimal(getattr(t, f, None))
        if v is not None and v < 0:
            raise InvalidTerm("invalid_term_amount", f"term {getattr(t, 'id', '?')} has negative {f}")

    et = (getattr(t, "escalation_type", None) or "none").strip().lower()
    if et not in ESCALATION_TYPES:
        raise InvalidTerm("invalid_escalation", f"unknown escalation_type {et!r}")
    if et != "none":
        every = getattr(t, "escalation_every_months", None)
        if not every or int(every) < 1:
            raise InvalidTerm("invalid_escalation", "escalation_every_months must be >= 1")
        if to_decimal(getattr(t, "escalation_value", None)) is None:
            raise InvalidTerm("invalid_escalation", "escalation_value is required")

    eff_from = getattr(t, "effective_from")
    eff_to = getattr(t, "effective_to", None)
    if eff_to is not None and eff_to <= eff_from:
        raise InvalidTerm("invalid_term_range", f"term effective_to {eff_to} must be after effective_from {eff_from}")


class TermTimeline:
    """
    Append-only term history for one lease as a sorted, non-overlapping list
    of half-open intervals. Lookup is by containment, never by creation order.
    """

    def __init__(self, terms: Iterable[Any]) -> None:
        rows = sorted(terms, key=lambda t: t.effective_from)
        spans: list[TermSpan] = []

        for i, t in enumerate(rows):
            _validate_term(t)
            nxt = rows[i + 1] if i + 1 < len(rows) else None

            if nxt is not None and nxt.effective_from == t.effective_from:
                raise OverlappingTerms(
                    f"two terms share effective_from {t.effective_from.isoformat()}",
                )

            stop = t.effective_to
            if nxt is not None:
                if stop is None:
                    stop = nxt.effective_from
                elif stop > nxt.effective_from:
                    raise OverlappingTerms(
                        f"term effective {t.effective_from.isoformat()}..{stop.isoformat()} overlaps "
                        f"term effective from {nxt.effective_from.isoformat()}",
                    )
            spans.append(TermSpan(term=t, start=t.effective_from, stop=stop))

        self._spans = spans
        self._starts = [s.start for s in spans]

    @property
    def spans(self) -> Sequence[TermSpan]:
        return tuple(self._spans)

    def __len__(self) -> int:
        return len(self._spans)

    def find(self, on: date) -> Optional[TermSpan]:
        i = bisect.bisect_right(self._starts, on) - 1
        if i < 0:
            return None
        span = self._spans[i]
        return span if span.contains(on) else None

    def resolve(self, on: date) -> Any:
        span = self.find(on)
        if span is None:
            raise NoTermFound(f"no lease term effective on {on.isoformat()}", on=on.isoformat())
        return span.term

    def covers(self, on: date) -> bool:
        return self.find(on) is not None

    def overlapping(self, start: date, end: date) -> list[TermSegment]:
        """Clip every term intersecting [start, end] (inclusive) to that window."""
        out: list[TermSegment] = []
        for span in self._spans:
            if span.start > end:
                break
            last = span.last_day
            if last is not None and last < start:
                continue
            seg_start = max(span.start, start)
            seg_end = end if last is None else min(last, end)
            if seg_end >= seg_start:
                out.append(TermSegment(span=span, start=seg_start, end=seg_end))
        return out

    def assert_no_overlap_with(self, candidate: Any) -> None:
        """Raise OverlappingTerms or InvalidTerm if appending `candidate` would break the timeline."""
        TermTimeline([*(s.term for s in self._spans), candidate])


def months_between(start: date, on: date) -> int:
    """Whole months elapsed from `start` to `on` (0 before the first anniversary day)."""
    months = (on.year - start.year) * 12 + (on.month - start.month)
    if on.day < start.day:
        months -= 1
    return max(0, months)


def escalation_steps(term: Any, on: date) -> int:
    et = (getattr(term, "escalation_type", None) or "none").strip().lower()
    every = getattr(term, "escalation_every_months", None)
    if et == "none" or not every:
        return 0
    return months_between(term.effective_from, on) // int(every)


def escalated_rent(term: Any, on: date) -> Decimal:
    """
    Rent for `on` after applying the term's escalation rule N times, where N is
    the number of full escalation intervals since effective_from.

    Pure: the escalated amount is never written back to the term.
    """
    base = to_decimal(term.monthly_rent) or Decimal("0")
    n = escalation_steps(term, on)
    if n == 0:
        return money(base)

    et = term.escalation_type.strip().lower()
    value = to_decimal(term.escalation_value) or Decimal("0")
    if et == "percentage":
        factor = (Decimal("1") + value / Decimal("100")) ** n
        return money(base * factor)
    if et == "fixed":
        return money(base + value * n)
    return money(base)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; the day clamps to the target month's length."""
    y, m = divmod(d.month - 1 + months, 12)
    year, month = d.year + y, m + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def escalation_start(term: Any, on: date) -> Optional[date]:
    """Start of the escalation interval `on` falls in, or None if no step has elapsed."""
    n = escalation_steps(term, on)
    if n == 0:
        return None
    return add_months(term.effective_from, n * int(term.escalation_every_months))
