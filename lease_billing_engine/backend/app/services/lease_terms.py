# backend/app/services/lease_terms.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.billing.money import money, to_decimal
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import InvalidTerm, InvalidTransition
from ..domain.leasing.lifecycle import TERMINAL, coerce_status
from ..domain.leasing.terms import TermTimeline, escalated_rent, escalation_start
from ..models import Invoice, LeaseTerm
from .ownership import must_get_lease

log = logging.getLogger(__name__)


def _term_dict(t: LeaseTerm) -> dict[str, Any]:
    return {
        "effective_from": t.effective_from,
        "effective_to": t.effective_to,
        "monthly_rent": t.monthly_rent,
        "security_deposit": t.security_deposit,
        "maintenance_charge": t.maintenance_charge,
        "other_fixed_charge": t.other_fixed_charge,
        "escalation_type": t.escalation_type,
        "escalation_value": t.escalation_value,
        "escalation_every_months": t.escalation_every_months,
    }


def _last_billed_day(db: Session, *, lease_id: int) -> Optional[date]:
    return db.scalar(
        select(func.max(Invoice.billing_period_end)).where(
            Invoice.lease_id == lease_id,
            Invoice.status != "void",
        )
    )


def add_lease_term(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    effective_from: date,
    monthly_rent: Any,
    security_deposit: Any = Decimal("0"),
    maintenance_charge: Any = None,
    other_fixed_charge: Any = None,
    escalation_type: str = "none",
    escalation_value: Any = None,
    escalation_every_months: Optional[int] = None,
    effective_to: Optional[date] = None,
    notes: Optional[str] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
    commit: bool = True,
    allow_billed_period: bool = False,
) -> LeaseTerm:
    """
    Append a term to the lease's history. Existing rows are never edited: an
    open-ended earlier term simply stops where this one starts.

    Raises OverlappingTerms / InvalidTerm for a term that breaks the timeline
    or that would reprice a period already invoiced.
    """
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    if coerce_status(lease.status) in TERMINAL:
        raise InvalidTransition("invalid_lease_state", f"lease {lease_id} is {lease.status}; terms are frozen")

    rent = to_decimal(monthly_rent)
    if rent is None or rent < 0:
        raise InvalidTerm("invalid_term_amount", f"monthly_rent must be a non-negative amount, got {monthly_rent!r}")

    billed_through = _last_billed_day(db, lease_id=lease.id)
    if not allow_billed_period and billed_through is not None and effective_from <= billed_through:
        raise InvalidTerm(
            "term_in_billed_period",
            f"lease is invoiced through {billed_through.isoformat()}; a new term must start after it",
        )

    row = LeaseTerm(
        effective_from=effective_from,
        effective_to=effective_to,
        monthly_rent=money(rent),
        security_deposit=money(security_deposit),
        maintenance_charge=None if maintenance_charge is None else money(maintenance_charge),
        other_fixed_charge=None if other_fixed_charge is None else money(other_fixed_charge),
        escalation_type=(escalation_type or "none").strip().lower(),
        escalation_value=to_decimal(escalation_value),
        escalation_every_months=escalation_every_months,
        notes=notes,
    )
    TermTimeline(lease.terms).assert_no_overlap_with(row)

    lease.terms.append(row)
    db.flush()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="lease_term.append",
        entity_type="lease",
        entity_id=lease.id,
        after=_term_dict(row),
        at=clock.now(),
    )
    if commit:
        db.commit()
    log.info("lease term appended", extra={"org_id": org_id, "lease_id": lease.id})
    return row


def materialize_escalation(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    on: date,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> Optional[LeaseTerm]:
    """
    Administrative action: write the escalated rent effective on `on` as a new
    explicit term starting at the escalation boundary.

    Returns None when no escalation step has elapsed (or it is already
    materialized). Billing never calls this; it is triggered by an operator or
    a scheduled job.
    """
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    timeline = TermTimeline(lease.terms)
    current = timeline.resolve(on)

    starts_at = escalation_start(current, on)
    if starts_at is None:
        return None

    if current.effective_to is not None:
        raise InvalidTerm(
            "escalation_requires_open_term",
            "an explicitly bounded term can't be superseded without editing it; append a term instead",
        )

    return add_lease_term(
        db,
        org_id=org_id,
        lease_id=lease.id,
        effective_from=starts_at,
        monthly_rent=escalated_rent(current, starts_at),
        security_deposit=current.security_deposit,
        maintenance_charge=current.maintenance_charge,
        other_fixed_charge=current.other_fixed_charge,
        escalation_type=current.escalation_type,
        escalation_value=current.escalation_value,
        escalation_every_months=current.escalation_every_months,
        notes=f"escalated from term {current.id}",
        allow_billed_period=settings.billing_apply_escalation,
        clock=clock,
        actor=actor,
    )
