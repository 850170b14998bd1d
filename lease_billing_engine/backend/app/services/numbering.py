# backend/app/services/numbering.py
from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import NumberSequence


def period_key(d: date) -> str:
    return f"{d.year:04d}{d.month:02d}"


def _bump(db: Session, *, org_id: int, kind: str, key: str) -> int:
    res = db.execute(
        update(NumberSequence)
        .where(
            NumberSequence.org_id == org_id,
            NumberSequence.kind == kind,
            NumberSequence.period_key == key,
        )
        .values(last_value=NumberSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return 0
    return int(
        db.scalar(
            select(NumberSequence.last_value).where(
                NumberSequence.org_id == org_id,
                NumberSequence.kind == kind,
                NumberSequence.period_key == key,
            )
        )
    )


def next_sequence(db: Session, *, org_id: int, kind: str, on: date) -> int:
    """
    Next counter value for (org, kind, month), inside the caller's transaction.

    The increment is a single UPDATE so concurrent callers serialize on the
    row lock; the first caller for a month creates the row under a savepoint.
    """
    key = period_key(on)
    value = _bump(db, org_id=org_id, kind=kind, key=key)
    if value:
        return value

    try:
        with db.begin_nested():
            db.add(NumberSequence(org_id=org_id, kind=kind, period_key=key, last_value=1))
        return 1
    except IntegrityError:
        # another writer created the row first
        return _bump(db, org_id=org_id, kind=kind, key=key)


def format_number(prefix: str, on: date, seq: int) -> str:
    return f"{prefix}-{period_key(on)}-{seq:06d}"


def next_invoice_number(db: Session, *, org_id: int, prefix: str, on: date) -> str:
    p = (prefix or "INV").strip().upper()
    return format_number(p, on, next_sequence(db, org_id=org_id, kind=f"invoice:{p}", on=on))


def next_credit_note_number(db: Session, *, org_id: int, prefix: str, on: date) -> str:
    p = (prefix or "CN").strip().upper()
    return format_number(p, on, next_sequence(db, org_id=org_id, kind=f"credit_note:{p}", on=on))


def new_run_number(on: date) -> str:
    return f"RUN-{period_key(on)}-{uuid.uuid4().hex[:8].upper()}"
