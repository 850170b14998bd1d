from __future__ import annotations

from datetime import date, datetime

import pytest
from sqlalchemy import select

from app.cli.seed_demo import seed_demo
from app.domain.clock import FixedClock
from app.models import ChargeType, InvoiceRun, Lease
from app.services.invoice_runs import create_run
from app.services.lease_activation import activate_lease
from app.workers import billing_tasks


@pytest.fixture
def queued(monkeypatch):
    calls = []
    monkeypatch.setattr(billing_tasks.run_invoice_batch_task, "delay", lambda **kw: calls.append(kw))
    return calls


def _at(monkeypatch, when: datetime) -> None:
    monkeypatch.setattr(billing_tasks, "SYSTEM_CLOCK", FixedClock(when))


def test_monthly_tick_waits_until_close_to_period(build, monkeypatch, queued):
    build.org()
    _at(monkeypatch, datetime(2026, 3, 10, 2, 0))

    out = billing_tasks.run_monthly_invoices_task.run()

    assert out["skipped"] == "not_due"
    assert queued == []


def test_monthly_tick_queues_one_run_per_org(build, db_session, monkeypatch, queued):
    a, b = build.org(), build.org()
    _at(monkeypatch, datetime(2026, 3, 28, 2, 0))

    first = billing_tasks.run_monthly_invoices_task.run()
    again = billing_tasks.run_monthly_invoices_task.run()

    assert first["queued"] == 2
    assert first["period_start"] == "2026-04-01"
    assert sorted(c["org_id"] for c in queued) == [a.id, b.id]
    # pending runs already exist for the period
    assert again["queued"] == 0
    runs = db_session.scalars(select(InvoiceRun)).all()
    assert {(r.billing_period_start, r.billing_period_end, r.status) for r in runs} == {
        (date(2026, 4, 1), date(2026, 4, 30), "pending")
    }


def test_batch_task_drives_pending_run(build, db_session):
    org = build.org()
    build.lease(org.id, status="active")
    run = create_run(db_session, org_id=org.id, period_start=date(2026, 3, 1), period_end=date(2026, 3, 31))

    out = billing_tasks.run_invoice_batch_task.run(org_id=org.id, run_id=run.id)
    assert out["ok"] is True
    assert out["success_count"] == 1

    # a finished run can't be started again
    again = billing_tasks.run_invoice_batch_task.run(org_id=org.id, run_id=run.id)
    assert again["ok"] is False
    assert again["error"]["code"] == "invalid_run_state"


def test_seed_demo_builds_an_activatable_lease(db_session, clock):
    res = seed_demo(org_slug="acme", org_name="Acme Rentals", lease_start=date(2026, 3, 1))

    assert res.lease_id is not None
    codes = set(db_session.scalars(select(ChargeType.code).where(ChargeType.org_id == res.org_id)).all())
    assert {"RENT", "MAINT", "ELEC"} <= codes

    lease = db_session.get(Lease, res.lease_id)
    assert activate_lease(db_session, org_id=res.org_id, lease_id=lease.id, expected_version=lease.version, clock=clock).ok

    # reseeding the same org reuses it
    assert seed_demo(org_slug="acme", create_sample_lease=False).org_id == res.org_id
