# backend/app/domain/leasing/activation.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

from ..errors import ActivationError
from .lifecycle import LeaseEvent, LeaseStatus, coerce_status, next_status
from .terms import TermTimeline

MIN_RENT_DUE_DAY = 1
MAX_RENT_DUE_DAY = 28  # valid in every month, February included


class PartyRole(str, Enum):
    primary_tenant = "primary_tenant"
    co_tenant = "co_tenant"
    guarantor = "guarantor"
    occupant = "occupant"


@dataclass(frozen=True)
class PartySnapshot:
    tenant_id: int
    role: str
    is_responsible_for_payment: bool


@dataclass(frozen=True)
class ActivationSnapshot:
    """Everything the gate reads, loaded up front so the checks stay pure."""

    lease_id: int
    status: str
    start_date: date
    end_date: Optional[date]
    rent_due_day: int
    parties: tuple[PartySnapshot, ...]
    terms: tuple[Any, ...]

    @classmethod
    def from_lease(cls, lease: Any) -> "ActivationSnapshot":
        return cls(
            lease_id=int(lease.id),
            status=lease.status,
            start_date=lease.start_date,
            end_date=lease.end_date,
            rent_due_day=int(lease.rent_due_day),
            parties=tuple(
                PartySnapshot(
                    tenant_id=int(p.tenant_id),
                    role=p.role,
                    is_responsible_for_payment=bool(p.is_responsible_for_payment),
                )
                for p in lease.parties
            ),
            terms=tuple(lease.terms),
        )


def check_activation(snap: ActivationSnapshot, *, unit_occupied: bool) -> Optional[ActivationError]:
    """
    Run the activation gate in order and return the first failure, or None.

    `unit_occupied` answers: does the unit already hold another occupying lease
    overlapping this lease's dates?
    """
    status = coerce_status(snap.status)
    if status != LeaseStatus.draft:
        return ActivationError(
            "invalid_lease_state",
            f"lease {snap.lease_id} is {status.value}, only draft leases can be activated",
            status=status.value,
        )

    if unit_occupied:
        return ActivationError(
            "unit_already_occupied",
            f"unit already has an active lease overlapping {snap.start_date.isoformat()}",
        )

    roles = {str(p.role).strip().lower() for p in snap.parties}
    if PartyRole.primary_tenant.value not in roles:
        return ActivationError("missing_primary_tenant", "lease has no party with role primary_tenant")

    if not any(p.is_responsible_for_payment for p in snap.parties):
        return ActivationError("no_payer_designated", "no lease party is responsible for payment")

    if not TermTimeline(snap.terms).covers(snap.start_date):
        return ActivationError(
            "no_term_for_start_date",
            f"no lease term is effective on start date {snap.start_date.isoformat()}",
        )

    if not (MIN_RENT_DUE_DAY <= snap.rent_due_day <= MAX_RENT_DUE_DAY):
        return ActivationError(
            "invalid_rent_due_day",
            f"rent_due_day must be between {MIN_RENT_DUE_DAY} and {MAX_RENT_DUE_DAY}, got {snap.rent_due_day}",
        )

    if snap.end_date is not None and snap.end_date <= snap.start_date:
        return ActivationError("invalid_date_range", "end_date must be after start_date")

    return None


def activate(snap: ActivationSnapshot, *, unit_occupied: bool) -> LeaseStatus:
    """Validate and return the new status. Raises the first ActivationError."""
    err = check_activation(snap, unit_occupied=unit_occupied)
    if err is not None:
        raise err
    return next_status(snap.status, LeaseEvent.activate)
