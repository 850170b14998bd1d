# backend/app/domain/leasing/lifecycle.py
from __future__ import annotations

from enum import Enum

from ..errors import InvalidTransition


class LeaseStatus(str, Enum):
    draft = "draft"
    active = "active"
    notice_given = "notice_given"
    ended = "ended"
    cancelled = "cancelled"


class LeaseEvent(str, Enum):
    activate = "activate"
    cancel = "cancel"
    give_notice = "give_notice"
    end = "end"


# One edge per (event, from-state). Anything not listed is illegal.
TRANSITIONS: dict[tuple[LeaseEvent, LeaseStatus], LeaseStatus] = {
    (LeaseEvent.activate, LeaseStatus.draft): LeaseStatus.active,
    (LeaseEvent.cancel, LeaseStatus.draft): LeaseStatus.cancelled,
    (LeaseEvent.give_notice, LeaseStatus.active): LeaseStatus.notice_given,
    (LeaseEvent.end, LeaseStatus.active): LeaseStatus.ended,
    (LeaseEvent.end, LeaseStatus.notice_given): LeaseStatus.ended,
}

# Statuses that hold a unit (count against "one active lease per unit").
OCCUPYING = frozenset({LeaseStatus.active, LeaseStatus.notice_given})
TERMINAL = frozenset({LeaseStatus.ended, LeaseStatus.cancelled})


def coerce_status(value: str | LeaseStatus) -> LeaseStatus:
    if isinstance(value, LeaseStatus):
        return value
    try:
        return LeaseStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidTransition("unknown_lease_status", f"unknown lease status {value!r}") from None


def next_status(current: str | LeaseStatus, event: LeaseEvent) -> LeaseStatus:
    """
    The single transition function for the lease lifecycle.

    Raises InvalidTransition for any edge not in TRANSITIONS; callers never
    assign Lease.status directly.
    """
    cur = coerce_status(current)
    nxt = TRANSITIONS.get((event, cur))
    if nxt is None:
        raise InvalidTransition(
            "invalid_lease_state",
            f"cannot {event.value} a lease in status {cur.value}",
            current=cur.value,
            event=event.value,
        )
    return nxt
