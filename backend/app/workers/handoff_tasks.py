# backend/app/workers/handoff_tasks.py
from __future__ import annotations

import logging
import random

from ..clients.payment_gateway import StripeGateway
from ..config import settings
from ..db import SessionLocal
from ..services.code_store import purge_expired
from .celery_app import celery_app

log = logging.getLogger("handoff.tasks")


def _backoff_seconds(retries: int) -> int:
    """
    Exponential backoff with jitter.
    retries is the current retry count (0 for first retry attempt).
    """
    base = int(settings.subscription_retry_base_seconds or 30)
    cap = int(settings.subscription_retry_max_seconds or 900)

    delay = min(cap, base * (2 ** max(0, int(retries))))

    # jitter: +/- 20%
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=30,
    name="app.workers.handoff_tasks.retry_subscription_cancellation",
)
def retry_subscription_cancellation(self, owner_user_id: int) -> dict:
    """
    Second chance for a departing syndic's billing after the handoff itself
    already completed. Cancelling is idempotent on the gateway side (a listing
    only returns still-active subscriptions), so repeated runs are safe.
    """
    db = SessionLocal()
    try:
        report = StripeGateway(db).cancel_all_active_subscriptions(int(owner_user_id))
        if report.ok:
            log.info("subscription retry succeeded", extra={"user_id": owner_user_id, "task_id": self.request.id})
            return report.as_dict()

        if self.request.retries < self.max_retries:
            countdown = _backoff_seconds(self.request.retries)
            log.warning(
                "subscription retry incomplete, rescheduling",
                extra={"user_id": owner_user_id, "task_id": self.request.id},
            )
            raise self.retry(countdown=countdown)

        log.error("subscription retry exhausted", extra={"user_id": owner_user_id, "task_id": self.request.id})
        return report.as_dict()
    finally:
        db.close()


@celery_app.task(name="app.workers.handoff_tasks.purge_expired_codes")
def purge_expired_codes() -> dict:
    db = SessionLocal()
    try:
        n = purge_expired(db)
        log.info("expired access codes purged", extra={"rows": n})
        return {"ok": True, "purged": n}
    finally:
        db.close()
