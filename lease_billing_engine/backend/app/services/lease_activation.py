# backend/app/services/lease_activation.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..domain.audit import audit_write
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import BillingError, ConcurrencyConflict
from ..domain.leasing.activation import ActivationSnapshot, activate
from ..domain.leasing.lifecycle import LeaseEvent, next_status
from ..models import Lease
from .lease_rules import find_unit_overlap
from .ownership import must_get_lease, must_get_unit

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaseTransitionResult:
    ok: bool
    lease_id: int
    status: Optional[str] = None
    version: Optional[int] = None
    error: Optional[BillingError] = None

    @property
    def error_code(self) -> Optional[str]:
        return None if self.error is None else self.error.code


ActivationResult = LeaseTransitionResult


def _snapshot(lease: Lease) -> dict:
    return {
        "status": lease.status,
        "version": lease.version,
        "start_date": lease.start_date,
        "end_date": lease.end_date,
    }


def _check_version(lease: Lease, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(expected_version) != int(lease.version):
        raise ConcurrencyConflict(
            f"lease {lease.id} is at version {lease.version}, caller expected {expected_version}",
            lease_id=lease.id,
            current_version=lease.version,
        )


def _fail(db: Session, *, org_id: int, lease_id: int, action: str, err: BillingError) -> LeaseTransitionResult:
    db.rollback()
    log.info(
        "%s rejected: %s",
        action,
        err.message,
        extra={"org_id": org_id, "lease_id": lease_id, "error_code": err.code},
    )
    return LeaseTransitionResult(ok=False, lease_id=lease_id, error=err)


def activate_lease(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    expected_version: Optional[int],
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> ActivationResult:
    """
    Draft -> Active, the only path to Active.

    The gate runs against the lease as loaded in this transaction. The unit's
    version is bumped in the same commit, so a second activation racing for
    the same unit loses with a stale-row error instead of double-occupying it.
    """
    try:
        lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
        _check_version(lease, expected_version)
        unit = must_get_unit(db, org_id=org_id, unit_id=lease.unit_id)

        overlap = find_unit_overlap(
            db,
            org_id=org_id,
            unit_id=lease.unit_id,
            start_date=lease.start_date,
            end_date=lease.end_date,
            ignore_lease_id=lease.id,
        )
        new_status = activate(ActivationSnapshot.from_lease(lease), unit_occupied=not overlap.ok)

        before = _snapshot(lease)
        lease.status = new_status.value
        lease.activated_at = clock.now()
        unit.version = int(unit.version) + 1

        db.flush()
        audit_write(
            db,
            org_id=org_id,
            actor=actor,
            action="lease.activate",
            entity_type="lease",
            entity_id=lease.id,
            before=before,
            after=_snapshot(lease),
            at=clock.now(),
        )
        db.commit()
    except BillingError as e:
        return _fail(db, org_id=org_id, lease_id=lease_id, action="lease.activate", err=e)
    except (StaleDataError, IntegrityError) as e:
        return _fail(
            db,
            org_id=org_id,
            lease_id=lease_id,
            action="lease.activate",
            err=ConcurrencyConflict(f"lease {lease_id} or its unit was changed concurrently: {type(e).__name__}"),
        )

    log.info("lease activated", extra={"org_id": org_id, "lease_id": lease.id})
    return LeaseTransitionResult(ok=True, lease_id=lease.id, status=lease.status, version=lease.version)


def _transition(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    expected_version: Optional[int],
    event: LeaseEvent,
    clock: Clock,
    actor: Optional[str],
    end_date: Optional[date] = None,
) -> LeaseTransitionResult:
    action = f"lease.{event.value}"
    try:
        lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
        _check_version(lease, expected_version)
        new_status = next_status(lease.status, event)

        if end_date is not None and end_date < lease.start_date:
            raise BillingError("invalid_date_range", "end_date cannot be before start_date")

        before = _snapshot(lease)
        now = clock.now()
        lease.status = new_status.value
        if event == LeaseEvent.cancel:
            lease.cancelled_at = now
        elif event == LeaseEvent.give_notice:
            lease.notice_given_at = now
        elif event == LeaseEvent.end:
            lease.ended_at = now
        if end_date is not None:
            lease.end_date = end_date

        db.flush()
        audit_write(
            db,
            org_id=org_id,
            actor=actor,
            action=action,
            entity_type="lease",
            entity_id=lease.id,
            before=before,
            after=_snapshot(lease),
            at=now,
        )
        db.commit()
    except BillingError as e:
        return _fail(db, org_id=org_id, lease_id=lease_id, action=action, err=e)
    except StaleDataError:
        return _fail(
            db,
            org_id=org_id,
            lease_id=lease_id,
            action=action,
            err=ConcurrencyConflict(f"lease {lease_id} was changed concurrently"),
        )

    return LeaseTransitionResult(ok=True, lease_id=lease.id, status=lease.status, version=lease.version)


def cancel_lease(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    expected_version: Optional[int],
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> LeaseTransitionResult:
    return _transition(
        db, org_id=org_id, lease_id=lease_id, expected_version=expected_version,
        event=LeaseEvent.cancel, clock=clock, actor=actor,
    )


def give_notice(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    expected_version: Optional[int],
    move_out_date: Optional[date] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> LeaseTransitionResult:
    """Active -> NoticeGiven. A move-out date becomes the lease's (inclusive) end date."""
    return _transition(
        db, org_id=org_id, lease_id=lease_id, expected_version=expected_version,
        event=LeaseEvent.give_notice, clock=clock, actor=actor, end_date=move_out_date,
    )


def end_lease(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    expected_version: Optional[int],
    end_date: Optional[date] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> LeaseTransitionResult:
    return _transition(
        db, org_id=org_id, lease_id=lease_id, expected_version=expected_version,
        event=LeaseEvent.end, clock=clock, actor=actor, end_date=end_date,
    )
