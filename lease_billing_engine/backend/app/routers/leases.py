# backend/app/routers/leases.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..schemas import (
    EndLeaseIn,
    GiveNoticeIn,
    LeaseStateOut,
    LeaseTermIn,
    LeaseTermOut,
    LeaseTransitionIn,
    RecurringChargeIn,
    RecurringChargeOut,
    UtilityStatementIn,
    UtilityStatementOut,
)
from ..services.lease_activation import LeaseTransitionResult, activate_lease, cancel_lease, end_lease, give_notice
from ..services.lease_terms import add_lease_term, materialize_escalation
from ..services.ownership import must_get_lease
from ..services.recurring_charges import (
    create_recurring_charge,
    deactivate_recurring_charge,
    list_recurring_charges,
)
from ..services.utility_statements import finalize_utility_statement, record_utility_statement

router = APIRouter(prefix="/leases", tags=["leases"])


def _state_or_raise(db: Session, p: Principal, res: LeaseTransitionResult):
    if not res.ok:
        raise res.error
    return must_get_lease(db, org_id=p.org_id, lease_id=res.lease_id)


@router.get("/{lease_id}", response_model=LeaseStateOut)
def get_lease(lease_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return must_get_lease(db, org_id=p.org_id, lease_id=lease_id)


@router.post("/{lease_id}/activate", response_model=LeaseStateOut)
def activate(
    lease_id: int,
    payload: LeaseTransitionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    res = activate_lease(db, org_id=p.org_id, lease_id=lease_id, expected_version=payload.expected_version, actor=p.actor)
    return _state_or_raise(db, p, res)


@router.post("/{lease_id}/cancel", response_model=LeaseStateOut)
def cancel(
    lease_id: int,
    payload: LeaseTransitionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    res = cancel_lease(db, org_id=p.org_id, lease_id=lease_id, expected_version=payload.expected_version, actor=p.actor)
    return _state_or_raise(db, p, res)


@router.post("/{lease_id}/give-notice", response_model=LeaseStateOut)
def notice(
    lease_id: int,
    payload: GiveNoticeIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    res = give_notice(
        db,
        org_id=p.org_id,
        lease_id=lease_id,
        expected_version=payload.expected_version,
        move_out_date=payload.move_out_date,
        actor=p.actor,
    )
    return _state_or_raise(db, p, res)


@router.post("/{lease_id}/end", response_model=LeaseStateOut)
def end(
    lease_id: int,
    payload: EndLeaseIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    res = end_lease(
        db,
        org_id=p.org_id,
        lease_id=lease_id,
        expected_version=payload.expected_version,
        end_date=payload.end_date,
        actor=p.actor,
    )
    return _state_or_raise(db, p, res)


# -------------------- Terms --------------------

@router.get("/{lease_id}/terms", response_model=list[LeaseTermOut])
def list_terms(lease_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list(must_get_lease(db, org_id=p.org_id, lease_id=lease_id).terms)


@router.post("/{lease_id}/terms", response_model=LeaseTermOut)
def append_term(
    lease_id: int,
    payload: LeaseTermIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return add_lease_term(db, org_id=p.org_id, lease_id=lease_id, actor=p.actor, **payload.model_dump())


@router.post("/{lease_id}/terms/materialize-escalation", response_model=Optional[LeaseTermOut])
def materialize(
    lease_id: int,
    on: date = Query(...),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return materialize_escalation(db, org_id=p.org_id, lease_id=lease_id, on=on, actor=p.actor)


# -------------------- Recurring charges --------------------

@router.get("/{lease_id}/recurring-charges", response_model=list[RecurringChargeOut])
def list_charges(
    lease_id: int,
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list_recurring_charges(db, org_id=p.org_id, lease_id=lease_id, include_inactive=include_inactive)


@router.post("/{lease_id}/recurring-charges", response_model=RecurringChargeOut)
def add_charge(
    lease_id: int,
    payload: RecurringChargeIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return create_recurring_charge(db, org_id=p.org_id, lease_id=lease_id, actor=p.actor, **payload.model_dump())


@router.post("/recurring-charges/{charge_id}/deactivate", response_model=RecurringChargeOut)
def deactivate_charge(charge_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return deactivate_recurring_charge(db, org_id=p.org_id, charge_id=charge_id, actor=p.actor)


# -------------------- Utility statements --------------------

@router.post("/{lease_id}/utility-statements", response_model=UtilityStatementOut)
def record_statement(
    lease_id: int,
    payload: UtilityStatementIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return record_utility_statement(db, org_id=p.org_id, lease_id=lease_id, **payload.model_dump())


@router.post("/utility-statements/{statement_id}/finalize", response_model=UtilityStatementOut)
def finalize_statement(statement_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return finalize_utility_statement(db, org_id=p.org_id, statement_id=statement_id)
