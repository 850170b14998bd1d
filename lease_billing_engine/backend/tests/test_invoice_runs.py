from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.domain.errors import BillingError, InvalidTransition
from app.models import Invoice, InvoiceRun, LeaseTerm
from app.services import invoice_runs
from app.services.invoice_runs import (
    RunStatus,
    billing_day_in_period,
    create_run,
    list_run_items,
    next_billing_period,
    run_invoice_batch,
    select_due_leases,
)

MARCH = dict(period_start=date(2026, 3, 1), period_end=date(2026, 3, 31))


def _run(session_factory, org_id, clock, **kw):
    kw.setdefault("max_workers", 4)
    if "run_id" not in kw:
        kw = {**MARCH, **kw}
    return run_invoice_batch(session_factory, org_id=org_id, clock=clock, **kw)


def _invoice_count(db) -> int:
    return db.scalar(select(func.count(Invoice.id)))


def test_billing_day_in_period():
    assert billing_day_in_period(1, date(2026, 3, 1), date(2026, 3, 31))
    assert billing_day_in_period(28, date(2026, 2, 1), date(2026, 2, 28))
    assert not billing_day_in_period(20, date(2026, 3, 1), date(2026, 3, 15))
    # a window crossing a month boundary
    assert billing_day_in_period(5, date(2026, 3, 16), date(2026, 4, 15))


def test_selection_filters(build, db_session):
    org = build.org()
    due = build.lease(org.id, status="active")
    build.lease(org.id, status="draft")
    build.lease(org.id, status="ended")
    build.lease(org.id, status="active", auto_generate=False)
    build.lease(org.id, status="active", start=date(2026, 4, 1))
    build.lease(org.id, status="active", start=date(2025, 1, 1), end=date(2026, 2, 28))
    late = build.lease(org.id, status="active", billing_day=20)
    build.lease(build.org().id, status="active")

    assert select_due_leases(db_session, org_id=org.id, **MARCH) == [due.id, late.id]
    assert select_due_leases(db_session, org_id=org.id, period_start=date(2026, 3, 1), period_end=date(2026, 3, 15)) == [due.id]


def test_run_generates_one_invoice_per_due_lease(build, db_session, session_factory, clock):
    org = build.org()
    leases = [build.lease(org.id, status="active", rent="1000") for _ in range(6)]

    summary = _run(session_factory, org.id, clock)

    assert summary.status == RunStatus.completed.value
    assert (summary.total_leases, summary.success_count, summary.failure_count) == (6, 6, 0)
    assert summary.error_message is None
    assert summary.started_at == clock.now()
    assert summary.completed_at == clock.now()
    assert sorted(o.lease_id for o in summary.outcomes) == sorted(l.id for l in leases)

    invoices = db_session.scalars(select(Invoice).where(Invoice.invoice_run_id == summary.run_id)).all()
    assert len(invoices) == 6
    assert all(i.total_amount == Decimal("1000.00") for i in invoices)
    numbers = sorted(i.invoice_number for i in invoices)
    assert numbers == [f"INV-202603-{n:06d}" for n in range(1, 7)]

    items = list_run_items(db_session, org_id=org.id, run_id=summary.run_id)
    assert len(items) == 6
    assert all(i.is_success and i.invoice_id for i in items)


def test_rerun_for_same_period_is_a_no_op(build, db_session, session_factory, clock):
    org = build.org()
    for _ in range(3):
        build.lease(org.id, status="active")

    first = _run(session_factory, org.id, clock)
    second = _run(session_factory, org.id, clock)

    assert first.success_count == 3
    assert second.status == RunStatus.completed.value
    assert (second.total_leases, second.success_count, second.failure_count) == (0, 0, 0)
    assert list_run_items(db_session, org_id=org.id, run_id=second.run_id) == []
    assert _invoice_count(db_session) == 3


def test_one_malformed_lease_does_not_fail_the_run(build, db_session, session_factory, clock):
    org = build.org()
    good = [build.lease(org.id, status="active") for _ in range(4)]
    bad = build.lease(org.id, status="active")
    db_session.add(LeaseTerm(lease_id=bad.id, effective_from=date(2026, 2, 1), monthly_rent=Decimal("-10")))
    db_session.commit()

    summary = _run(session_factory, org.id, clock)

    assert summary.status == RunStatus.completed.value
    assert (summary.total_leases, summary.success_count, summary.failure_count) == (5, 4, 1)
    assert f"lease {bad.id}: invalid_term_amount" in summary.error_message

    items = {i.lease_id: i for i in list_run_items(db_session, org_id=org.id, run_id=summary.run_id)}
    assert not items[bad.id].is_success
    assert items[bad.id].error_code == "invalid_term_amount"
    assert items[bad.id].invoice_id is None
    assert all(items[l.id].is_success for l in good)
    assert db_session.scalar(select(func.count(Invoice.id)).where(Invoice.lease_id == bad.id)) == 0


def test_crash_in_one_lease_is_recorded_as_infrastructure_error(build, db_session, session_factory, clock, monkeypatch):
    org = build.org()
    a = build.lease(org.id, status="active")
    b = build.lease(org.id, status="active")
    real = invoice_runs.generate_invoice_for_lease

    def flaky(db, **kw):
        if kw["lease_id"] == b.id:
            raise RuntimeError("connection reset")
        return real(db, **kw)

    monkeypatch.setattr(invoice_runs, "generate_invoice_for_lease", flaky)
    summary = _run(session_factory, org.id, clock)

    assert summary.status == RunStatus.completed.value
    by_lease = {o.lease_id: o for o in summary.outcomes}
    assert by_lease[a.id].ok
    assert by_lease[b.id].error_code == "infrastructure_error"
    assert by_lease[b.id].error_kind == "infrastructure"
    assert "connection reset" in by_lease[b.id].error_message


def test_selection_fault_fails_the_run(build, db_session, session_factory, clock, monkeypatch):
    org = build.org()
    build.lease(org.id, status="active")

    def broken(db, **kw):
        raise ValueError("day is out of range for month")

    monkeypatch.setattr(invoice_runs, "select_due_leases", broken)
    summary = _run(session_factory, org.id, clock)

    assert summary.status == RunStatus.failed.value
    assert summary.completed_at == clock.now()
    assert summary.error_message.startswith("lease selection failed: ValueError")

    db_session.expire_all()
    row = db_session.get(InvoiceRun, summary.run_id)
    assert (row.status, row.completed_at) == (RunStatus.failed.value, clock.now())
    assert _invoice_count(db_session) == 0


def test_bookkeeping_fault_fails_the_run(build, db_session, session_factory, clock, monkeypatch):
    org = build.org()
    build.lease(org.id, status="active")
    build.lease(org.id, status="active")

    def broken(db, **kw):
        raise RuntimeError("disk full")

    monkeypatch.setattr(invoice_runs, "_record_item", broken)
    summary = _run(session_factory, org.id, clock, max_workers=1)

    assert summary.status == RunStatus.failed.value
    assert "run bookkeeping failed: RuntimeError: disk full" in summary.error_message
    assert summary.total_leases == 2
    assert summary.success_count >= 1

    db_session.expire_all()
    row = db_session.get(InvoiceRun, summary.run_id)
    assert row.status == RunStatus.failed.value
    assert row.completed_at == clock.now()


def test_cancel_before_start_records_nothing(build, db_session, session_factory, clock):
    org = build.org()
    for _ in range(3):
        build.lease(org.id, status="active")
    ev = threading.Event()
    ev.set()

    summary = _run(session_factory, org.id, clock, cancel_event=ev)

    assert summary.status == RunStatus.cancelled.value
    assert summary.total_leases == 3
    assert summary.success_count == summary.failure_count == 0
    assert list_run_items(db_session, org_id=org.id, run_id=summary.run_id) == []
    assert _invoice_count(db_session) == 0


def test_cancel_mid_run_keeps_finished_items(build, db_session, session_factory, clock, monkeypatch):
    org = build.org()
    for _ in range(4):
        build.lease(org.id, status="active")
    ev = threading.Event()
    real = invoice_runs.generate_invoice_for_lease

    def then_cancel(db, **kw):
        res = real(db, **kw)
        ev.set()
        return res

    monkeypatch.setattr(invoice_runs, "generate_invoice_for_lease", then_cancel)
    summary = _run(session_factory, org.id, clock, cancel_event=ev, max_workers=1)

    assert summary.status == RunStatus.cancelled.value
    assert summary.success_count == 1
    assert len(list_run_items(db_session, org_id=org.id, run_id=summary.run_id)) == 1
    assert _invoice_count(db_session) == 1

    # the rest are picked up by the next run
    follow_up = _run(session_factory, org.id, clock)
    assert follow_up.success_count == 3


def test_existing_run_must_be_pending(build, db_session, session_factory, clock):
    org = build.org()
    build.lease(org.id, status="active")
    run = create_run(db_session, org_id=org.id, clock=clock, **MARCH)
    assert run.status == RunStatus.pending.value

    summary = _run(session_factory, org.id, clock, run_id=run.id)
    assert summary.run_id == run.id
    assert summary.success_count == 1

    with pytest.raises(InvalidTransition) as ei:
        _run(session_factory, org.id, clock, run_id=run.id)
    assert ei.value.code == "invalid_run_state"

    db_session.expire_all()
    assert db_session.get(InvoiceRun, run.id).status == RunStatus.completed.value


def test_inverted_period_rejected(build, db_session, clock):
    org = build.org()
    with pytest.raises(BillingError) as ei:
        create_run(db_session, org_id=org.id, period_start=date(2026, 3, 31), period_end=date(2026, 3, 1), clock=clock)
    assert ei.value.code == "invalid_period"


def test_error_digest_is_bounded(build, db_session, session_factory, clock, monkeypatch):
    monkeypatch.setattr(invoice_runs.settings, "billing_run_error_digest_limit", 2)
    org = build.org()
    for _ in range(4):
        build.lease(org.id, status="active", with_terms=False)

    summary = _run(session_factory, org.id, clock)

    assert summary.failure_count == 4
    lines = summary.error_message.splitlines()
    assert len(lines) == 3
    assert lines[-1] == "... and 2 more"
    assert all("no_term_found" in l for l in lines[:2])


def test_next_billing_period():
    assert next_billing_period(date(2026, 3, 10)) == (date(2026, 4, 1), date(2026, 4, 30))
    assert next_billing_period(date(2026, 12, 31)) == (date(2027, 1, 1), date(2027, 1, 31))
