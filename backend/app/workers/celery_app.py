# backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

BROKER = settings.celery_broker_url or "redis://localhost:6379/0"
BACKEND = settings.celery_result_backend or "redis://localhost:6379/1"

celery_app = Celery(
    "handoff",
    broker=BROKER,
    backend=BACKEND,
    include=["app.workers.handoff_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "app.workers.handoff_tasks.*": {"queue": "handoff"},
}

celery_app.conf.beat_schedule = {
    "purge-expired-access-codes": {
        "task": "app.workers.handoff_tasks.purge_expired_codes",
        "schedule": 6 * 60 * 60,
    },
}
