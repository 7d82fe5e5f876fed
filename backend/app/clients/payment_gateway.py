# backend/app/clients/payment_gateway.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..models import BillingCustomer

log = logging.getLogger("handoff.payments")


class PaymentGatewayError(Exception):
    pass


@dataclass
class CancellationReport:
    owner_user_id: int
    cancelled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "owner_user_id": self.owner_user_id,
            "cancelled": list(self.cancelled),
            "failed": list(self.failed),
            "error": self.error,
            "ok": self.ok,
        }


class StripeGateway:
    """
    Just enough of the Stripe REST API to end a departing syndic's billing:
    list active subscriptions for a customer, cancel one.
    """

    def __init__(
        self,
        db: Session,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.db = db
        self.api_key = api_key if api_key is not None else settings.stripe_api_key
        self.base = (base_url or settings.stripe_base_url).rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.payment_gateway_timeout_seconds)
        self.transport = transport

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base,
            auth=(str(self.api_key), ""),
            timeout=self.timeout,
            transport=self.transport,
        )

    def customer_id_for(self, owner_user_id: int) -> Optional[str]:
        row = self.db.scalar(select(BillingCustomer).where(BillingCustomer.user_id == int(owner_user_id)))
        return str(row.stripe_customer_id) if row else None

    def list_active_subscriptions(self, owner_user_id: int) -> list[str]:
        if not self.enabled():
            return []
        customer = self.customer_id_for(owner_user_id)
        if not customer:
            return []

        ids: list[str] = []
        params: dict[str, Any] = {"customer": customer, "status": "active", "limit": 100}
        try:
            with self._client() as client:
                while True:
                    r = client.get("/subscriptions", params=params)
                    r.raise_for_status()
                    data = r.json()
                    page = [s for s in (data.get("data") or []) if s.get("status") == "active"]
                    ids.extend(str(s["id"]) for s in page)
                    if not data.get("has_more") or not page:
                        break
                    params["starting_after"] = page[-1]["id"]
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"list subscriptions failed: {e}") from e
        return ids

    def cancel(self, subscription_id: str) -> None:
        if not self.enabled():
            raise PaymentGatewayError("stripe_api_key not set")
        try:
            with self._client() as client:
                r = client.delete(f"/subscriptions/{subscription_id}")
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"cancel {subscription_id} failed: {e}") from e

    def cancel_all_active_subscriptions(self, owner_user_id: int) -> CancellationReport:
        """
        Cancel every active subscription of the owner. One failing subscription
        does not stop the others; a failed listing is reported in `error`.
        """
        report = CancellationReport(owner_user_id=int(owner_user_id))
        try:
            subs = self.list_active_subscriptions(owner_user_id)
        except PaymentGatewayError as e:
            report.error = str(e)
            log.error("subscription listing failed", extra={"user_id": owner_user_id})
            return report

        for sub_id in subs:
            try:
                self.cancel(sub_id)
                report.cancelled.append(sub_id)
                log.info("subscription cancelled", extra={"user_id": owner_user_id, "subscription_id": sub_id})
            except PaymentGatewayError:
                report.failed.append(sub_id)
                log.error("subscription cancel failed", extra={"user_id": owner_user_id, "subscription_id": sub_id})
        return report
