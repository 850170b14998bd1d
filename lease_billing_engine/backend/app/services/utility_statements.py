# backend/app/services/utility_statements.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..domain.billing.money import money, to_decimal
from ..domain.billing.utility_rates import RatePlan
from ..domain.errors import (
    BillingError,
    ConcurrencyConflict,
    InvalidConsumption,
    InvalidRatePlan,
    NotFound,
    StatementAlreadyFinal,
)
from ..models import UtilityRatePlan, UtilityRateSlab, UtilityStatement
from .ownership import must_get_lease, must_get_statement

log = logging.getLogger(__name__)

UTILITY_TYPES = {"electricity", "water", "gas", "other"}


def _utility_type(v: str) -> str:
    t = (v or "").strip().lower()
    if t not in UTILITY_TYPES:
        raise BillingError("invalid_utility_type", f"utility_type must be one of {sorted(UTILITY_TYPES)}")
    return t


def create_rate_plan(
    db: Session,
    *,
    org_id: int,
    name: str,
    utility_type: str,
    slabs: Iterable[dict[str, Any]],
    commit: bool = True,
) -> UtilityRatePlan:
    """Persist a plan only after its slabs pass validation."""
    slab_rows = list(slabs)
    RatePlan.from_slabs(slab_rows, name=name)

    plan = UtilityRatePlan(org_id=org_id, name=name, utility_type=_utility_type(utility_type), is_active=True)
    for s in slab_rows:
        plan.slabs.append(
            UtilityRateSlab(
                slab_order=int(s["slab_order"]),
                from_units=to_decimal(s["from_units"]),
                to_units=to_decimal(s.get("to_units")),
                rate_per_unit=to_decimal(s["rate_per_unit"]),
                fixed_charge=to_decimal(s.get("fixed_charge")),
            )
        )
    db.add(plan)
    db.flush()
    if commit:
        db.commit()
    return plan


def load_rate_plan(db: Session, *, org_id: int, plan_id: int) -> RatePlan:
    plan = db.scalar(select(UtilityRatePlan).where(UtilityRatePlan.id == plan_id, UtilityRatePlan.org_id == org_id))
    if plan is None:
        raise NotFound("rate_plan", plan_id)
    if not plan.is_active:
        raise InvalidRatePlan(f"rate plan {plan_id} is not active", plan_id=plan_id)
    return RatePlan.from_slabs(plan.slabs, plan_id=plan.id, name=plan.name)


def _current_final(db: Session, s: UtilityStatement) -> Optional[UtilityStatement]:
    return db.scalar(
        select(UtilityStatement).where(
            UtilityStatement.lease_id == s.lease_id,
            UtilityStatement.utility_type == s.utility_type,
            UtilityStatement.period_start == s.period_start,
            UtilityStatement.period_end == s.period_end,
            UtilityStatement.is_final.is_(True),
        )
    )


def record_utility_statement(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    utility_type: str,
    period_start: date,
    period_end: date,
    is_meter_based: bool,
    rate_plan_id: Optional[int] = None,
    previous_reading: Any = None,
    current_reading: Any = None,
    units_consumed: Any = None,
    direct_amount: Any = None,
    notes: Optional[str] = None,
    finalize: bool = False,
    commit: bool = True,
) -> UtilityStatement:
    """
    Append a new version of the statement for (lease, utility type, period).

    Corrections are new versions; earlier versions are kept as history.
    """
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    ut = _utility_type(utility_type)
    if period_end < period_start:
        raise BillingError("invalid_period", "statement period end is before its start")

    units = to_decimal(units_consumed)
    amount = None
    if is_meter_based:
        prev, cur = to_decimal(previous_reading), to_decimal(current_reading)
        if prev is not None and cur is not None:
            if cur < prev:
                raise InvalidConsumption(f"current reading {cur} is below previous reading {prev}")
            units = cur - prev
        if units is None or units < 0:
            raise InvalidConsumption("meter-based statement needs readings or a non-negative units_consumed")
        if rate_plan_id is None:
            raise InvalidRatePlan("meter-based statement needs a rate plan")
        # refuse to record against a plan that can't bill
        load_rate_plan(db, org_id=org_id, plan_id=rate_plan_id)
    else:
        amount = to_decimal(direct_amount)
        if amount is None or amount < 0:
            raise InvalidConsumption("amount-based statement needs a non-negative direct_amount")
        amount = money(amount)

    last_version = db.scalar(
        select(func.max(UtilityStatement.version)).where(
            UtilityStatement.lease_id == lease.id,
            UtilityStatement.utility_type == ut,
            UtilityStatement.period_start == period_start,
            UtilityStatement.period_end == period_end,
        )
    )

    row = UtilityStatement(
        org_id=org_id,
        lease_id=lease.id,
        utility_type=ut,
        period_start=period_start,
        period_end=period_end,
        is_meter_based=bool(is_meter_based),
        rate_plan_id=rate_plan_id if is_meter_based else None,
        previous_reading=to_decimal(previous_reading),
        current_reading=to_decimal(current_reading),
        units_consumed=units if is_meter_based else None,
        direct_amount=amount,
        version=int(last_version or 0) + 1,
        is_final=False,
        notes=notes,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConcurrencyConflict("another version of this statement was recorded concurrently") from e

    if finalize:
        return finalize_utility_statement(db, org_id=org_id, statement_id=row.id, commit=commit)
    if commit:
        db.commit()
    return row


def finalize_utility_statement(
    db: Session,
    *,
    org_id: int,
    statement_id: int,
    commit: bool = True,
) -> UtilityStatement:
    """Mark one version final. Only one final version may exist per (lease, type, period)."""
    s = must_get_statement(db, org_id=org_id, statement_id=statement_id)
    if s.is_final:
        return s

    existing = _current_final(db, s)
    if existing is not None:
        raise StatementAlreadyFinal(
            f"version {existing.version} is already final for this period",
            statement_id=existing.id,
        )

    s.is_final = True
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConcurrencyConflict("another version was finalized concurrently") from e
    if commit:
        db.commit()
    log.info("utility statement finalized", extra={"org_id": org_id, "lease_id": s.lease_id})
    return s
