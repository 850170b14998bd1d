# backend/app/workers/billing_tasks.py
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select

from ..config import settings
from ..db import SessionLocal
from ..domain.clock import SYSTEM_CLOCK
from ..domain.errors import BillingError
from ..models import InvoiceRun, Organization
from ..services.invoice_runs import RunStatus, create_run, next_billing_period, run_invoice_batch
from .celery_app import celery_app

log = logging.getLogger(__name__)


# Runs are never retried automatically; a failed run is re-triggered by an operator.
@celery_app.task(bind=True, max_retries=0, name="app.workers.billing_tasks.run_invoice_batch")
def run_invoice_batch_task(self, org_id: int, run_id: int) -> dict:
    """Drive a Pending run created by the API or the monthly tick."""
    try:
        summary = run_invoice_batch(SessionLocal, org_id=int(org_id), run_id=int(run_id))
    except BillingError as e:
        log.warning("invoice run not started: %s", e.message, extra={"org_id": org_id, "run_id": run_id})
        return {"ok": False, "run_id": int(run_id), "error": e.as_info().as_dict()}

    return {
        "ok": summary.status == RunStatus.completed.value,
        "run_id": summary.run_id,
        "status": summary.status,
        "total_leases": summary.total_leases,
        "success_count": summary.success_count,
        "failure_count": summary.failure_count,
    }


@celery_app.task(bind=True, max_retries=0, name="app.workers.billing_tasks.run_monthly_invoices")
def run_monthly_invoices_task(self) -> dict:
    """
    Daily tick. Once today is within `billing_days_before_period_start` days of
    the next calendar month, queue one run per organization that doesn't
    already have a live run for it.
    """
    today = SYSTEM_CLOCK.today()
    ps, pe = next_billing_period(today)
    if today < ps - timedelta(days=int(settings.billing_days_before_period_start)):
        return {"ok": True, "queued": 0, "period_start": ps.isoformat(), "skipped": "not_due"}

    queued: list[int] = []
    db = SessionLocal()
    try:
        org_ids = list(db.scalars(select(Organization.id).order_by(Organization.id)).all())
        for org_id in org_ids:
            live = db.scalar(
                select(InvoiceRun.id).where(
                    InvoiceRun.org_id == org_id,
                    InvoiceRun.billing_period_start == ps,
                    InvoiceRun.billing_period_end == pe,
                    InvoiceRun.status.in_(
                        (RunStatus.pending.value, RunStatus.running.value, RunStatus.completed.value)
                    ),
                )
            )
            if live is not None:
                continue
            run = create_run(db, org_id=int(org_id), period_start=ps, period_end=pe)
            run_invoice_batch_task.delay(org_id=int(org_id), run_id=int(run.id))
            queued.append(int(run.id))
    finally:
        db.close()

    log.info("monthly invoice runs queued: %s", len(queued), extra={"period": ps.isoformat()})
    return {"ok": True, "queued": len(queued), "run_ids": queued, "period_start": ps.isoformat()}
