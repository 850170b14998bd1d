# backend/app/services/recurring_charges.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.billing.assembly import RECURRING_FREQUENCIES
from ..domain.billing.money import money, to_decimal
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import BillingError, InvalidTransition
from ..domain.leasing.lifecycle import TERMINAL, coerce_status
from ..models import LeaseRecurringCharge
from .ownership import must_get_lease, must_get_recurring_charge

log = logging.getLogger(__name__)


def _charge_dict(c: LeaseRecurringCharge) -> dict[str, Any]:
    return {
        "charge_code": c.charge_code,
        "description": c.description,
        "amount": c.amount,
        "frequency": c.frequency,
        "start_date": c.start_date,
        "end_date": c.end_date,
        "is_active": c.is_active,
    }


def create_recurring_charge(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    charge_code: str,
    description: str,
    amount: Any,
    start_date: date,
    frequency: str = "monthly",
    end_date: Optional[date] = None,
    notes: Optional[str] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
    commit: bool = True,
) -> LeaseRecurringCharge:
    """
    Attach a charge to a lease. Monthly charges are billed every period their
    date range touches (prorated at the edges); a one-time charge is billed by
    the period containing its start date.
    """
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    if coerce_status(lease.status) in TERMINAL:
        raise InvalidTransition("invalid_lease_state", f"lease {lease_id} is {lease.status}; charges are frozen")

    freq = (frequency or "").strip().lower()
    if freq not in RECURRING_FREQUENCIES:
        raise BillingError(
            "invalid_charge_frequency", f"frequency must be one of {sorted(RECURRING_FREQUENCIES)}"
        )

    value = to_decimal(amount)
    if value is None or value <= 0:
        raise BillingError("invalid_charge_amount", f"amount must be positive, got {amount!r}")

    code = (charge_code or "").strip().upper()
    if not code:
        raise BillingError("invalid_charge_code", "charge_code is required")

    if end_date is not None and end_date < start_date:
        raise BillingError("invalid_charge_dates", "end_date is before start_date")

    row = LeaseRecurringCharge(
        org_id=org_id,
        lease_id=lease.id,
        charge_code=code,
        description=(description or "").strip() or code,
        amount=money(value),
        frequency=freq,
        start_date=start_date,
        end_date=end_date,
        is_active=True,
        notes=notes,
    )
    db.add(row)
    db.flush()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="recurring_charge.create",
        entity_type="lease_recurring_charge",
        entity_id=row.id,
        after=_charge_dict(row),
        at=clock.now(),
    )
    if commit:
        db.commit()
    log.info("recurring charge added", extra={"org_id": org_id, "lease_id": lease.id, "charge_id": row.id})
    return row


def deactivate_recurring_charge(
    db: Session,
    *,
    org_id: int,
    charge_id: int,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> LeaseRecurringCharge:
    """Stops future billing. Invoices that already carry the charge are untouched."""
    row = must_get_recurring_charge(db, org_id=org_id, charge_id=charge_id)
    if not row.is_active:
        return row

    before = _charge_dict(row)
    row.is_active = False
    db.flush()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="recurring_charge.deactivate",
        entity_type="lease_recurring_charge",
        entity_id=row.id,
        before=before,
        after=_charge_dict(row),
        at=clock.now(),
    )
    db.commit()
    log.info("recurring charge deactivated", extra={"org_id": org_id, "charge_id": row.id})
    return row


def list_recurring_charges(
    db: Session, *, org_id: int, lease_id: int, include_inactive: bool = False
) -> list[LeaseRecurringCharge]:
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    q = select(LeaseRecurringCharge).where(
        LeaseRecurringCharge.org_id == org_id, LeaseRecurringCharge.lease_id == lease.id
    )
    if not include_inactive:
        q = q.where(LeaseRecurringCharge.is_active.is_(True))
    return list(db.scalars(q.order_by(LeaseRecurringCharge.start_date, LeaseRecurringCharge.id)).all())
