from __future__ import annotations

from datetime import date

import pytest

from app.services.lease_rules import find_unit_overlap, periods_overlap


def test_periods_overlap_inclusive_and_open_ended():
    assert periods_overlap(date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31), None)
    assert not periods_overlap(date(2026, 1, 1), date(2026, 1, 31), date(2026, 2, 1), None)
    assert periods_overlap(date(2026, 1, 1), None, date(2030, 1, 1), date(2030, 1, 2))


def test_overlap_blocked(build, db_session):
    org = build.org()
    unit = build.unit(org.id)
    l1 = build.lease(org.id, unit_id=unit.id, start=date(2026, 1, 1), end=date(2026, 12, 31), status="active")
    build.lease(org.id, unit_id=unit.id, start=date(2026, 3, 1), status="draft")

    res = find_unit_overlap(db_session, org_id=org.id, unit_id=unit.id, start_date=date(2026, 6, 1))
    assert not res.ok
    assert res.conflict_lease_id == l1.id
    assert "open-ended" not in res.message

    # the lease doesn't conflict with itself; drafts never occupy
    assert find_unit_overlap(
        db_session, org_id=org.id, unit_id=unit.id, start_date="2026-06-01", ignore_lease_id=l1.id
    ).ok
    assert find_unit_overlap(db_session, org_id=org.id, unit_id=unit.id, start_date=date(2027, 1, 1)).ok


def test_start_date_required(build, db_session):
    org = build.org()
    unit = build.unit(org.id)
    with pytest.raises(ValueError):
        find_unit_overlap(db_session, org_id=org.id, unit_id=unit.id, start_date="not-a-date")
