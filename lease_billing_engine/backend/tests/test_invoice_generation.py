from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from app.models import Invoice, LeaseTerm
from app.services import invoice_generation
from app.services.invoice_generation import generate_invoice_for_lease
from app.services.invoice_management import issue_invoice
from app.services.utility_statements import create_rate_plan, record_utility_statement

APRIL = dict(period_start=date(2026, 4, 1), period_end=date(2026, 4, 30))
MARCH = dict(period_start=date(2026, 3, 1), period_end=date(2026, 3, 31))


def _generate(db, org_id, lease_id, clock, **period):
    return generate_invoice_for_lease(db, org_id=org_id, lease_id=lease_id, clock=clock, **(period or MARCH))


def _electricity(db, org_id, lease_id, plan_id, units, *, period_start, period_end):
    return record_utility_statement(
        db,
        org_id=org_id,
        lease_id=lease_id,
        utility_type="electricity",
        period_start=period_start,
        period_end=period_end,
        is_meter_based=True,
        rate_plan_id=plan_id,
        units_consumed=units,
        finalize=True,
    )


def test_mid_month_move_in_is_prorated(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active", start=date(2026, 4, 21), rent="15000", payment_term_days=7)

    res = _generate(db_session, org.id, lease.id, clock, **APRIL)

    assert res.ok, res.error
    inv = res.invoice
    assert inv.status == "draft"
    assert inv.invoice_number == "INV-202604-000001"
    assert [(l.charge_code, l.amount, l.is_prorated) for l in inv.lines] == [("RENT", Decimal("5000.00"), True)]
    assert inv.lines[0].period_start == date(2026, 4, 21)
    assert inv.sub_total == Decimal("5000.00")
    assert inv.tax_amount == Decimal("0.00")
    assert inv.total_amount == Decimal("5000.00")
    assert inv.balance_amount == Decimal("5000.00")
    assert inv.invoice_date == date(2026, 4, 30)
    assert inv.due_date == date(2026, 5, 7)


def test_full_month_with_taxable_maintenance_and_utility(build, db_session, clock):
    org = build.org()
    build.charge_type(org.id, "RENT")
    build.charge_type(org.id, "MAINT", taxable=True, rate="18")
    lease = build.lease(org.id, status="active", rent="1000", maintenance="200")
    plan = build.electricity_plan(org.id)
    _electricity(db_session, org.id, lease.id, plan.id, "150", **MARCH)

    res = _generate(db_session, org.id, lease.id, clock)

    assert res.ok, res.error
    lines = res.invoice.lines
    assert [(l.line_number, l.charge_code, l.source) for l in lines] == [
        (1, "RENT", "rent"),
        (2, "MAINT", "fixed_charge"),
        (3, "ELEC", "utility"),
    ]
    assert [l.amount for l in lines] == [Decimal("1000.00"), Decimal("200.00"), Decimal("17.50")]
    assert lines[1].tax_rate == Decimal("18")
    assert lines[1].tax_amount == Decimal("36.00")
    assert lines[1].total_amount == Decimal("236.00")
    assert lines[2].quantity == Decimal("150")
    assert res.invoice.sub_total == Decimal("1217.50")
    assert res.invoice.tax_amount == Decimal("36.00")
    assert res.invoice.total_amount == Decimal("1253.50")


def test_term_change_mid_period_splits_rent(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active", rent="1000")
    lease.terms.append(LeaseTerm(effective_from=date(2026, 3, 16), monthly_rent=Decimal("1200")))
    db_session.commit()

    res = _generate(db_session, org.id, lease.id, clock)

    assert res.ok, res.error
    assert [(l.period_start, l.period_end, l.amount) for l in res.invoice.lines] == [
        (date(2026, 3, 1), date(2026, 3, 15), Decimal("483.87")),
        (date(2026, 3, 16), date(2026, 3, 31), Decimal("619.35")),
    ]


def test_escalated_rent_is_billed(build, db_session, clock):
    org = build.org()
    lease = build.lease(
        org.id,
        status="active",
        start=date(2025, 3, 1),
        rent="1000",
        escalation_type="percentage",
        escalation_value="10",
        escalation_every_months=12,
    )
    res = _generate(db_session, org.id, lease.id, clock)
    assert res.invoice.lines[0].amount == Decimal("1100.00")


def test_lease_under_notice_bills_to_move_out(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="notice_given", end=date(2026, 3, 15), rent="1000")
    res = _generate(db_session, org.id, lease.id, clock)
    assert res.ok, res.error
    assert res.invoice.total_amount == Decimal("483.87")


def test_late_statement_billed_as_prior_period_adjustment(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active")
    plan = build.electricity_plan(org.id)
    _electricity(db_session, org.id, lease.id, plan.id, "50", period_start=date(2026, 2, 1), period_end=date(2026, 2, 28))
    _electricity(db_session, org.id, lease.id, plan.id, "150", **MARCH)

    res = _generate(db_session, org.id, lease.id, clock)

    utility = [(l.source, l.amount) for l in res.invoice.lines if l.source != "rent"]
    assert utility == [("utility", Decimal("17.50")), ("adjustment", Decimal("5.00"))]
    assert res.invoice.lines[-1].description.startswith("Prior period")

    # billed once only
    april = _generate(db_session, org.id, lease.id, clock, **APRIL)
    assert [l.source for l in april.invoice.lines] == ["rent"]


def test_draft_statement_is_not_billed(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active")
    record_utility_statement(
        db_session,
        org_id=org.id,
        lease_id=lease.id,
        utility_type="water",
        is_meter_based=False,
        direct_amount="30",
        **MARCH,
    )
    res = _generate(db_session, org.id, lease.id, clock)
    assert len(res.invoice.lines) == 1


def test_draft_is_rebuilt_in_place(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active")
    first = _generate(db_session, org.id, lease.id, clock)
    assert not first.was_updated

    record_utility_statement(
        db_session,
        org_id=org.id,
        lease_id=lease.id,
        utility_type="water",
        is_meter_based=False,
        direct_amount="30",
        finalize=True,
        **MARCH,
    )
    second = _generate(db_session, org.id, lease.id, clock)

    assert second.ok, second.error
    assert second.was_updated
    assert second.invoice_id == first.invoice_id
    assert second.invoice.invoice_number == "INV-202603-000001"
    assert [l.line_number for l in second.invoice.lines] == [1, 2]
    assert second.invoice.total_amount == Decimal("1030.00")
    assert db_session.scalar(select(func.count(Invoice.id))) == 1


def test_issued_invoice_blocks_regeneration(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active")
    inv = _generate(db_session, org.id, lease.id, clock).invoice
    issue_invoice(db_session, org_id=org.id, invoice_id=inv.id, clock=clock)

    res = _generate(db_session, org.id, lease.id, clock)

    assert not res.ok
    assert res.error.code == "duplicate_invoice"
    assert res.error.kind == "state"
    assert res.error.lease_id == lease.id


def test_overlapping_period_rejected(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active")
    assert _generate(db_session, org.id, lease.id, clock).ok

    res = _generate(db_session, org.id, lease.id, clock, period_start=date(2026, 3, 16), period_end=date(2026, 4, 15))
    assert res.error.code == "overlapping_invoice_period"


def test_only_occupying_leases_are_billed(build, db_session, clock):
    org = build.org()
    for status in ("draft", "cancelled", "ended"):
        lease = build.lease(org.id, status=status)
        res = _generate(db_session, org.id, lease.id, clock)
        assert res.error.code == "lease_not_billable"
        assert res.error.kind == "state"


def test_lease_outside_period_not_billable(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active", start=date(2026, 5, 1))
    res = _generate(db_session, org.id, lease.id, clock)
    assert res.error.code == "lease_not_billable"


def test_term_gap_fails_whole_invoice(build, db_session, clock):
    org = build.org()
    lease = build.lease(org.id, status="active", start=date(2026, 3, 1), term_from=date(2026, 3, 10))
    res = _generate(db_session, org.id, lease.id, clock)
    assert res.error.code == "no_term_found"
    assert db_session.scalar(select(func.count(Invoice.id))) == 0


def test_failure_rolls_back_everything_including_number(build, db_session, clock):
    org = build.org()
    capped = create_rate_plan(
        db_session,
        org_id=org.id,
        name="capped",
        utility_type="electricity",
        slabs=[{"slab_order": 1, "from_units": "0", "to_units": "100", "rate_per_unit": "0.10"}],
    )
    bad = build.lease(org.id, status="active")
    _electricity(db_session, org.id, bad.id, capped.id, "150", **MARCH)

    res = _generate(db_session, org.id, bad.id, clock)
    assert not res.ok
    assert res.error.code == "invalid_consumption"
    assert db_session.scalar(select(func.count(Invoice.id))) == 0

    good = build.lease(org.id, status="active")
    assert _generate(db_session, org.id, good.id, clock).invoice.invoice_number == "INV-202603-000001"


def test_numbers_are_sequential_per_month_and_prefix(build, db_session, clock):
    org = build.org()
    a = build.lease(org.id, status="active")
    b = build.lease(org.id, status="active")
    c = build.lease(org.id, status="active", invoice_prefix="acme")

    assert _generate(db_session, org.id, a.id, clock).invoice.invoice_number == "INV-202603-000001"
    assert _generate(db_session, org.id, b.id, clock).invoice.invoice_number == "INV-202603-000002"
    assert _generate(db_session, org.id, c.id, clock).invoice.invoice_number == "ACME-202603-000001"
    assert _generate(db_session, org.id, a.id, clock, **APRIL).invoice.invoice_number == "INV-202604-000001"


def test_unknown_lease(build, db_session, clock):
    org = build.org()
    res = _generate(db_session, org.id, 9999, clock)
    assert res.error.code == "lease_not_found"
    assert res.error.kind == "not_found"


def test_invoice_written_concurrently_is_a_concurrency_conflict(build, db_session, session_factory, clock, monkeypatch):
    org = build.org()
    lease = build.lease(org.id, status="active")
    real_load = invoice_generation.load_billing_context

    def load_after_rival_commits(db, **kw):
        # another worker bills the same lease and period between our duplicate check and our insert
        with session_factory() as rival:
            rival.add(
                Invoice(
                    org_id=org.id,
                    lease_id=lease.id,
                    invoice_number="INV-RIVAL-000001",
                    status="issued",
                    billing_period_start=MARCH["period_start"],
                    billing_period_end=MARCH["period_end"],
                    invoice_date=MARCH["period_end"],
                    due_date=MARCH["period_end"],
                    total_amount=Decimal("1000.00"),
                    balance_amount=Decimal("1000.00"),
                )
            )
            rival.commit()
        return real_load(db, **kw)

    monkeypatch.setattr(invoice_generation, "load_billing_context", load_after_rival_commits)

    res = _generate(db_session, org.id, lease.id, clock)

    assert not res.ok
    assert res.error.code == "concurrency_conflict"
    assert res.error.kind == "concurrency"
    assert res.error.lease_id == lease.id
    rows = db_session.scalars(select(Invoice).where(Invoice.lease_id == lease.id)).all()
    assert [r.invoice_number for r in rows] == ["INV-RIVAL-000001"]
