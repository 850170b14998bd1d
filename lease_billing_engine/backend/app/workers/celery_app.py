# lease_billing_engine/backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from ..config import settings

BROKER = settings.celery_broker_url or "redis://localhost:6379/0"
BACKEND = settings.celery_result_backend or "redis://localhost:6379/1"

celery_app = Celery(
    "lease_billing",
    broker=BROKER,
    backend=BACKEND,
    include=["app.workers.billing_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,  # a batch run is long; don't let one worker hoard them
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "app.workers.billing_tasks.*": {"queue": "billing"},
}

# Daily tick; the task itself decides whether the next period is due.
celery_app.conf.beat_schedule = {
    "monthly-invoices": {
        "task": "app.workers.billing_tasks.run_monthly_invoices",
        "schedule": crontab(hour=2, minute=0),
    },
}
