# backend/app/services/invoice_runs.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.billing.proration import month_bounds
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import BillingError, InvalidTransition
from ..domain.leasing.lifecycle import LeaseStatus
from ..domain.leasing.terms import add_months
from ..models import Invoice, InvoiceRun, InvoiceRunItem, Lease, LeaseBillingSetting
from .invoice_generation import generate_invoice_for_lease
from .numbering import new_run_number
from .ownership import must_get_run

log = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class RunStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_RUN = {RunStatus.completed.value, RunStatus.failed.value, RunStatus.cancelled.value}


@dataclass(frozen=True)
class LeaseOutcome:
    lease_id: int
    ok: bool
    processed_at: datetime
    invoice_id: Optional[int] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class InvoiceRunSummary:
    run_id: int
    run_number: str
    org_id: int
    period_start: date
    period_end: date
    status: str
    total_leases: int = 0
    success_count: int = 0
    failure_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    outcomes: tuple[LeaseOutcome, ...] = field(default_factory=tuple)

    @classmethod
    def from_run(cls, run: InvoiceRun, outcomes: tuple[LeaseOutcome, ...] = ()) -> "InvoiceRunSummary":
        return cls(
            run_id=run.id,
            run_number=run.run_number,
            org_id=run.org_id,
            period_start=run.billing_period_start,
            period_end=run.billing_period_end,
            status=run.status,
            total_leases=run.total_leases,
            success_count=run.success_count,
            failure_count=run.failure_count,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error_message=run.error_message,
            outcomes=outcomes,
        )


def billing_day_in_period(billing_day: int, period_start: date, period_end: date) -> bool:
    """Does some date in [period_start, period_end] fall on `billing_day` of its month?"""
    cur = date(period_start.year, period_start.month, 1)
    while cur <= period_end:
        _, last = month_bounds(cur)
        if billing_day <= last.day:
            candidate = date(cur.year, cur.month, billing_day)
            if period_start <= candidate <= period_end:
                return True
        cur = add_months(cur, 1)
    return False


def select_due_leases(db: Session, *, org_id: int, period_start: date, period_end: date) -> list[int]:
    """
    Active, auto-billed leases overlapping the period whose billing day falls
    inside it and that have no live invoice for this exact period.
    """
    already_billed = exists().where(
        and_(
            Invoice.lease_id == Lease.id,
            Invoice.billing_period_start == period_start,
            Invoice.billing_period_end == period_end,
            Invoice.status != "void",
        )
    )
    rows = db.execute(
        select(Lease.id, LeaseBillingSetting.billing_day)
        .join(LeaseBillingSetting, LeaseBillingSetting.lease_id == Lease.id)
        .where(
            Lease.org_id == org_id,
            Lease.status == LeaseStatus.active.value,
            LeaseBillingSetting.generate_invoice_automatically.is_(True),
            Lease.start_date <= period_end,
            or_(Lease.end_date.is_(None), Lease.end_date >= period_start),
            ~already_billed,
        )
        .order_by(Lease.id)
    ).all()
    return [int(lease_id) for lease_id, day in rows if billing_day_in_period(int(day), period_start, period_end)]


def create_run(db: Session, *, org_id: int, period_start: date, period_end: date, clock: Clock = SYSTEM_CLOCK) -> InvoiceRun:
    if period_end < period_start:
        raise BillingError("invalid_period", "billing period end is before its start")
    run = InvoiceRun(
        org_id=org_id,
        run_number=new_run_number(period_start),
        billing_period_start=period_start,
        billing_period_end=period_end,
        status=RunStatus.pending.value,
        created_at=clock.now(),
    )
    db.add(run)
    db.commit()
    return run


def _process_lease(
    session_factory: SessionFactory,
    *,
    org_id: int,
    run_id: int,
    lease_id: int,
    period_start: date,
    period_end: date,
    clock: Clock,
    cancel_event: Optional[threading.Event],
) -> Optional[LeaseOutcome]:
    if cancel_event is not None and cancel_event.is_set():
        return None

    db = session_factory()
    try:
        res = generate_invoice_for_lease(
            db,
            org_id=org_id,
            lease_id=lease_id,
            period_start=period_start,
            period_end=period_end,
            clock=clock,
            invoice_run_id=run_id,
        )
        if res.ok:
            return LeaseOutcome(lease_id=lease_id, ok=True, invoice_id=res.invoice_id, processed_at=clock.now())
        return LeaseOutcome(
            lease_id=lease_id,
            ok=False,
            error_code=res.error.code,
            error_kind=res.error.kind,
            error_message=res.error.message,
            processed_at=clock.now(),
        )
    except Exception as e:
        # one lease's infrastructure fault must not take down the batch
        db.rollback()
        log.exception("lease processing crashed", extra={"org_id": org_id, "lease_id": lease_id, "run_id": run_id})
        return LeaseOutcome(
            lease_id=lease_id,
            ok=False,
            error_code="infrastructure_error",
            error_kind="infrastructure",
            error_message=f"{type(e).__name__}: {e}",
            processed_at=clock.now(),
        )
    finally:
        db.close()


def _record_item(db: Session, *, run_id: int, outcome: LeaseOutcome) -> None:
    db.add(
        InvoiceRunItem(
            run_id=run_id,
            lease_id=outcome.lease_id,
            is_success=outcome.ok,
            invoice_id=outcome.invoice_id,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            processed_at=outcome.processed_at,
        )
    )
    db.commit()


def _error_digest(outcomes: list[LeaseOutcome], limit: int) -> Optional[str]:
    failed = [o for o in outcomes if not o.ok]
    if not failed:
        return None
    failed.sort(key=lambda o: o.lease_id)
    lines = [f"lease {o.lease_id}: {o.error_code}: {o.error_message}" for o in failed[: max(1, limit)]]
    if len(failed) > limit:
        lines.append(f"... and {len(failed) - limit} more")
    return "\n".join(lines)


def _fail_run(
    db: Session,
    run: InvoiceRun,
    *,
    message: str,
    clock: Clock,
    outcomes: Optional[list[LeaseOutcome]] = None,
) -> None:
    db.rollback()
    if outcomes:
        run.success_count = sum(1 for o in outcomes if o.ok)
        run.failure_count = len(outcomes) - run.success_count
    run.status = RunStatus.failed.value
    run.error_message = message[:4000]
    run.completed_at = clock.now()
    db.commit()


def run_invoice_batch(
    session_factory: SessionFactory,
    *,
    org_id: int,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    run_id: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    max_workers: Optional[int] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> InvoiceRunSummary:
    """
    Drive one invoice run: Pending -> Running -> Completed | Failed | Cancelled.

    Each selected lease is generated on a bounded thread pool with its own
    session and transaction, so one lease's failure never rolls back another's
    invoice. Outcomes are collected into a list and counted after the pool
    joins. Only selection or bookkeeping faults fail the run. A set
    `cancel_event` stops leases that haven't started; finished items stay.

    Pass `run_id` to drive a run created earlier (API / Celery); otherwise a
    new run is created for the period.
    """
    workers = max(1, int(max_workers or settings.billing_max_workers))
    db = session_factory()
    try:
        if run_id is not None:
            run = must_get_run(db, org_id=org_id, run_id=run_id)
            if run.status != RunStatus.pending.value:
                raise InvalidTransition("invalid_run_state", f"run {run.id} is {run.status}; only pending runs can start")
        else:
            if period_start is None or period_end is None:
                raise BillingError("invalid_period", "period_start and period_end are required")
            run = create_run(db, org_id=org_id, period_start=period_start, period_end=period_end, clock=clock)

        ps, pe = run.billing_period_start, run.billing_period_end
        extra = {"org_id": org_id, "run_id": run.id, "period": f"{ps.isoformat()}..{pe.isoformat()}"}

        run.status = RunStatus.running.value
        run.started_at = clock.now()
        db.commit()
        log.info("invoice run started", extra=extra)

        # anything that goes wrong from here on is a run-level fault: the run
        # ends Failed with a summary instead of staying Running
        try:
            lease_ids = select_due_leases(db, org_id=org_id, period_start=ps, period_end=pe)
            run.total_leases = len(lease_ids)
            db.commit()
        except Exception as e:
            log.exception("invoice run lease selection failed", extra=extra)
            _fail_run(db, run, message=f"lease selection failed: {type(e).__name__}: {e}", clock=clock)
            return InvoiceRunSummary.from_run(run)

        outcomes: list[LeaseOutcome] = []
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"invoice-run-{run.id}") as pool:
                futures = [
                    pool.submit(
                        _process_lease,
                        session_factory,
                        org_id=org_id,
                        run_id=run.id,
                        lease_id=lease_id,
                        period_start=ps,
                        period_end=pe,
                        clock=clock,
                        cancel_event=cancel_event,
                    )
                    for lease_id in lease_ids
                ]
                try:
                    for fut in as_completed(futures):
                        outcome = fut.result()
                        if outcome is None:
                            continue
                        outcomes.append(outcome)
                        _record_item(db, run_id=run.id, outcome=outcome)
                except Exception:
                    # leases not yet started are dropped; in-flight ones finish
                    for fut in futures:
                        fut.cancel()
                    raise

            cancelled = cancel_event is not None and cancel_event.is_set() and len(outcomes) < len(lease_ids)

            run.success_count = sum(1 for o in outcomes if o.ok)
            run.failure_count = len(outcomes) - run.success_count
            run.error_message = _error_digest(outcomes, settings.billing_run_error_digest_limit)
            run.status = RunStatus.cancelled.value if cancelled else RunStatus.completed.value
            run.completed_at = clock.now()
            db.commit()
        except Exception as e:
            log.exception("invoice run bookkeeping failed", extra=extra)
            _fail_run(
                db,
                run,
                message=f"run bookkeeping failed: {type(e).__name__}: {e}",
                clock=clock,
                outcomes=outcomes,
            )
            return InvoiceRunSummary.from_run(run, tuple(outcomes))

        log.info(
            "invoice run %s: %s ok, %s failed of %s",
            run.status,
            run.success_count,
            run.failure_count,
            run.total_leases,
            extra=extra,
        )
        return InvoiceRunSummary.from_run(run, tuple(outcomes))
    finally:
        db.close()


def next_billing_period(today: date) -> tuple[date, date]:
    """The calendar month after `today`'s month."""
    first, _ = month_bounds(add_months(date(today.year, today.month, 1), 1))
    return month_bounds(first)


def list_run_items(db: Session, *, org_id: int, run_id: int) -> list[InvoiceRunItem]:
    run = must_get_run(db, org_id=org_id, run_id=run_id)
    return list(
        db.scalars(select(InvoiceRunItem).where(InvoiceRunItem.run_id == run.id).order_by(InvoiceRunItem.id)).all()
    )
