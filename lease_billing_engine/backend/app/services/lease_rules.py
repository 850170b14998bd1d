from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.leasing.lifecycle import OCCUPYING
from app.models import Lease


def _as_date(v: Any) -> Optional[date]:
    if v is None:
        return None
    if isinstance(v, date) and not isinstance(v, datetime):
        return v
    if isinstance(v, datetime):
        return v.date()
    try:
        return date.fromisoformat(str(v))
    except ValueError:
        return None


def _overlaps(a_start: date, a_end: Optional[date], b_start: date, b_end: Optional[date]) -> bool:
    """
    Overlap rule:
    - Treat end dates as inclusive.
    - If end is None, treat it as open-ended.
    """
    a_end_eff = a_end or date.max
    b_end_eff = b_end or date.max
    return not (a_end_eff < b_start or b_end_eff < a_start)


def periods_overlap(a_start: date, a_end: Optional[date], b_start: date, b_end: Optional[date]) -> bool:
    return _overlaps(a_start, a_end, b_start, b_end)


@dataclass(frozen=True)
class LeaseOverlapResult:
    ok: bool
    conflict_lease_id: Optional[int] = None
    message: Optional[str] = None


def find_unit_overlap(
    db: Session,
    *,
    org_id: int,
    unit_id: int,
    start_date: Any,
    end_date: Any = None,
    ignore_lease_id: Optional[int] = None,
) -> LeaseOverlapResult:
    """
    Does the unit already hold an occupying (active / notice_given) lease whose
    dates overlap [start_date, end_date]? Future-dated active leases count.
    """
    s = _as_date(start_date)
    e = _as_date(end_date)
    if s is None:
        raise ValueError("lease start_date is required and must be a date")

    q = select(Lease).where(
        Lease.org_id == int(org_id),
        Lease.unit_id == int(unit_id),
        Lease.status.in_([st.value for st in OCCUPYING]),
    )
    if ignore_lease_id is not None:
        q = q.where(Lease.id != int(ignore_lease_id))

    for r in db.scalars(q.order_by(Lease.id)).all():
        r_start = _as_date(r.start_date)
        if r_start is None:
            continue
        r_end = _as_date(r.end_date)
        if _overlaps(s, e, r_start, r_end):
            return LeaseOverlapResult(
                ok=False,
                conflict_lease_id=int(r.id),
                message=(
                    f"unit {unit_id} already has lease id={int(r.id)} "
                    f"({r_start.isoformat()} -> {(r_end.isoformat() if r_end else 'open-ended')})"
                ),
            )
    return LeaseOverlapResult(ok=True)
