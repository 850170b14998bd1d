from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.domain.errors import InvalidConsumption, InvalidRatePlan, NotFound, StatementAlreadyFinal
from app.services.utility_statements import (
    create_rate_plan,
    finalize_utility_statement,
    load_rate_plan,
    record_utility_statement,
)

MARCH = dict(period_start=date(2026, 3, 1), period_end=date(2026, 3, 31))


def test_readings_derive_units(build, db_session):
    org = build.org()
    lease = build.lease(org.id, status="active")
    plan = build.electricity_plan(org.id)

    s = record_utility_statement(
        db_session,
        org_id=org.id,
        lease_id=lease.id,
        utility_type="Electricity",
        is_meter_based=True,
        rate_plan_id=plan.id,
        previous_reading="1200",
        current_reading="1350",
        **MARCH,
    )
    assert s.utility_type == "electricity"
    assert s.units_consumed == Decimal("150")
    assert s.version == 1
    assert not s.is_final


def test_reading_going_backwards_rejected(build, db_session):
    org = build.org()
    lease = build.lease(org.id, status="active")
    plan = build.electricity_plan(org.id)
    with pytest.raises(InvalidConsumption):
        record_utility_statement(
            db_session,
            org_id=org.id,
            lease_id=lease.id,
            utility_type="electricity",
            is_meter_based=True,
            rate_plan_id=plan.id,
            previous_reading="500",
            current_reading="499",
            **MARCH,
        )


def test_meter_based_needs_active_plan(build, db_session):
    org = build.org()
    lease = build.lease(org.id, status="active")
    with pytest.raises(InvalidRatePlan):
        record_utility_statement(
            db_session, org_id=org.id, lease_id=lease.id, utility_type="water", is_meter_based=True, units_consumed="3", **MARCH
        )

    plan = build.electricity_plan(org.id)
    plan.is_active = False
    db_session.commit()
    with pytest.raises(InvalidRatePlan):
        load_rate_plan(db_session, org_id=org.id, plan_id=plan.id)


def test_plan_from_other_org_is_not_found(build, db_session):
    org_a, org_b = build.org(), build.org()
    plan = build.electricity_plan(org_a.id)
    with pytest.raises(NotFound):
        load_rate_plan(db_session, org_id=org_b.id, plan_id=plan.id)


def test_invalid_plan_never_persisted(build, db_session):
    org = build.org()
    with pytest.raises(InvalidRatePlan):
        create_rate_plan(
            db_session,
            org_id=org.id,
            name="broken",
            utility_type="water",
            slabs=[{"slab_order": 1, "from_units": "5", "to_units": None, "rate_per_unit": "1"}],
        )


def test_amount_based_statement(build, db_session):
    org = build.org()
    lease = build.lease(org.id, status="active")
    s = record_utility_statement(
        db_session,
        org_id=org.id,
        lease_id=lease.id,
        utility_type="gas",
        is_meter_based=False,
        direct_amount="42.505",
        finalize=True,
        **MARCH,
    )
    assert s.direct_amount == Decimal("42.51")
    assert s.is_final

    with pytest.raises(InvalidConsumption):
        record_utility_statement(
            db_session, org_id=org.id, lease_id=lease.id, utility_type="gas", is_meter_based=False, **MARCH
        )


def test_corrections_are_new_versions_with_one_final(build, db_session):
    org = build.org()
    lease = build.lease(org.id, status="active")

    v1 = record_utility_statement(
        db_session, org_id=org.id, lease_id=lease.id, utility_type="water", is_meter_based=False, direct_amount="10", finalize=True, **MARCH
    )
    v2 = record_utility_statement(
        db_session, org_id=org.id, lease_id=lease.id, utility_type="water", is_meter_based=False, direct_amount="12", **MARCH
    )
    assert (v1.version, v2.version) == (1, 2)

    with pytest.raises(StatementAlreadyFinal) as ei:
        finalize_utility_statement(db_session, org_id=org.id, statement_id=v2.id)
    assert ei.value.kind == "state"

    # finalizing the already-final version is a no-op
    assert finalize_utility_statement(db_session, org_id=org.id, statement_id=v1.id).is_final
