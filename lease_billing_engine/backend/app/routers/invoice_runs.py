# backend/app/routers/invoice_runs.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..config import settings
from ..db import SessionLocal, get_db
from ..schemas import InvoiceRunIn, InvoiceRunOut
from ..services.invoice_runs import create_run, run_invoice_batch
from ..services.ownership import must_get_run

router = APIRouter(prefix="/invoice-runs", tags=["invoice-runs"])


@router.post("", response_model=InvoiceRunOut)
def start_run(payload: InvoiceRunIn, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    """
    Create a run for the period and drive it. With Celery enabled the run is
    returned Pending and a worker picks it up; poll GET /invoice-runs/{id}.
    """
    run = create_run(db, org_id=p.org_id, period_start=payload.period_start, period_end=payload.period_end)

    if settings.billing_runs_via_celery:
        from ..workers.billing_tasks import run_invoice_batch_task

        run_invoice_batch_task.delay(org_id=p.org_id, run_id=int(run.id))
        return run

    run_invoice_batch(SessionLocal, org_id=p.org_id, run_id=int(run.id))
    db.expire_all()
    return must_get_run(db, org_id=p.org_id, run_id=int(run.id))


@router.get("/{run_id}", response_model=InvoiceRunOut)
def get_run(run_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return must_get_run(db, org_id=p.org_id, run_id=run_id)
