from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from app.domain.errors import InvalidTerm, NoTermFound, OverlappingTerms
from app.domain.leasing.terms import (
    TermTimeline,
    add_months,
    escalated_rent,
    escalation_start,
    months_between,
)


@dataclass
class T:
    effective_from: date
    monthly_rent: Decimal = Decimal("1000")
    effective_to: Optional[date] = None
    escalation_type: str = "none"
    escalation_value: Optional[Decimal] = None
    escalation_every_months: Optional[int] = None
    security_deposit: Decimal = Decimal("0")
    maintenance_charge: Optional[Decimal] = None
    other_fixed_charge: Optional[Decimal] = None
    id: Optional[int] = None


def test_open_ended_term_stops_at_next_term():
    a = T(date(2026, 1, 1), Decimal("1000"))
    b = T(date(2026, 7, 1), Decimal("1100"))
    tl = TermTimeline([b, a])  # order of creation doesn't matter

    assert tl.resolve(date(2026, 6, 30)) is a
    assert tl.resolve(date(2026, 7, 1)) is b
    assert tl.resolve(date(2030, 1, 1)) is b


def test_effective_to_is_exclusive():
    a = T(date(2026, 1, 1), effective_to=date(2026, 4, 1))
    tl = TermTimeline([a])
    assert tl.covers(date(2026, 3, 31))
    assert not tl.covers(date(2026, 4, 1))
    with pytest.raises(NoTermFound):
        tl.resolve(date(2026, 4, 1))


def test_no_term_before_first():
    tl = TermTimeline([T(date(2026, 2, 1))])
    assert tl.find(date(2026, 1, 31)) is None


def test_overlapping_terms_rejected():
    with pytest.raises(OverlappingTerms):
        TermTimeline([T(date(2026, 1, 1), effective_to=date(2026, 8, 1)), T(date(2026, 7, 1))])
    with pytest.raises(OverlappingTerms):
        TermTimeline([T(date(2026, 1, 1)), T(date(2026, 1, 1))])


def test_candidate_overlap_check():
    tl = TermTimeline([T(date(2026, 1, 1), effective_to=date(2026, 12, 1))])
    with pytest.raises(OverlappingTerms):
        tl.assert_no_overlap_with(T(date(2025, 6, 1), effective_to=date(2026, 2, 1)))
    tl.assert_no_overlap_with(T(date(2026, 12, 1)))


def test_invalid_term_rows():
    with pytest.raises(InvalidTerm):
        TermTimeline([T(date(2026, 1, 1), Decimal("-1"))])
    with pytest.raises(InvalidTerm):
        TermTimeline([T(date(2026, 1, 1), effective_to=date(2026, 1, 1))])
    with pytest.raises(InvalidTerm):
        TermTimeline([T(date(2026, 1, 1), escalation_type="percentage", escalation_value=Decimal("5"))])


def test_overlapping_segments_are_clipped():
    a = T(date(2026, 1, 1), Decimal("1000"))
    b = T(date(2026, 1, 16), Decimal("1200"))
    segs = TermTimeline([a, b]).overlapping(date(2026, 1, 1), date(2026, 1, 31))
    assert [(s.term, s.start, s.end) for s in segs] == [
        (a, date(2026, 1, 1), date(2026, 1, 15)),
        (b, date(2026, 1, 16), date(2026, 1, 31)),
    ]


def test_months_between():
    assert months_between(date(2026, 1, 15), date(2026, 2, 14)) == 0
    assert months_between(date(2026, 1, 15), date(2026, 2, 15)) == 1
    assert months_between(date(2026, 1, 1), date(2027, 1, 1)) == 12
    assert months_between(date(2026, 5, 1), date(2026, 1, 1)) == 0


def test_percentage_escalation_compounds():
    t = T(
        date(2026, 1, 1),
        Decimal("1000"),
        escalation_type="percentage",
        escalation_value=Decimal("10"),
        escalation_every_months=12,
    )
    assert escalated_rent(t, date(2026, 12, 31)) == Decimal("1000.00")
    assert escalated_rent(t, date(2027, 1, 1)) == Decimal("1100.00")
    assert escalated_rent(t, date(2028, 1, 1)) == Decimal("1210.00")


def test_fixed_escalation_adds_per_step():
    t = T(
        date(2026, 1, 1),
        Decimal("1000"),
        escalation_type="fixed",
        escalation_value=Decimal("50"),
        escalation_every_months=6,
    )
    assert escalated_rent(t, date(2026, 7, 1)) == Decimal("1050.00")
    assert escalated_rent(t, date(2027, 7, 1)) == Decimal("1150.00")


def test_escalation_never_mutates_term():
    t = T(date(2026, 1, 1), Decimal("1000"), escalation_type="fixed", escalation_value=Decimal("50"), escalation_every_months=1)
    escalated_rent(t, date(2027, 1, 1))
    assert t.monthly_rent == Decimal("1000")


def test_escalation_start():
    t = T(date(2026, 1, 31), escalation_type="fixed", escalation_value=Decimal("1"), escalation_every_months=1)
    assert escalation_start(t, date(2026, 2, 27)) is None
    assert escalation_start(t, date(2026, 3, 31)) == date(2026, 3, 31)
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
