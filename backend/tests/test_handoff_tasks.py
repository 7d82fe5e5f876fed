from __future__ import annotations

from datetime import timedelta

from app.config import settings
from app.models import BillingCustomer
from app.services import code_store
from app.workers import handoff_tasks
from app.workers.handoff_tasks import _backoff_seconds, purge_expired_codes, retry_subscription_cancellation


def test_backoff_grows_and_is_capped():
    base = settings.subscription_retry_base_seconds
    cap = settings.subscription_retry_max_seconds

    first = _backoff_seconds(0)
    assert int(base * 0.8) <= first <= int(base * 1.2) + 1
    assert _backoff_seconds(20) <= int(cap * 1.2) + 1


def test_purge_task_removes_stale_codes(db, residence_42):
    w = residence_42
    stale = code_store.issue(
        db,
        original_user_id=w.owner_id,
        replacement_email=w.replacement_email,
        residence_id=w.residence_id,
        ttl=timedelta(days=-(settings.access_code_retention_days + 5)),
    ).code

    out = purge_expired_codes()

    assert out == {"ok": True, "purged": 1}
    assert code_store.find(db, stale) is None


def test_retry_task_cancels_with_gateway(db, residence_42, monkeypatch):
    w = residence_42
    db.add(BillingCustomer(user_id=w.owner_id, stripe_customer_id="cus_9"))
    db.commit()

    class StubGateway:
        def __init__(self, _db):
            pass

        def cancel_all_active_subscriptions(self, owner_user_id):
            from app.clients.payment_gateway import CancellationReport

            return CancellationReport(owner_user_id=owner_user_id, cancelled=["sub_x"])

    monkeypatch.setattr(handoff_tasks, "StripeGateway", StubGateway)

    result = retry_subscription_cancellation.apply(args=[w.owner_id]).get()

    assert result["ok"] is True
    assert result["cancelled"] == ["sub_x"]
