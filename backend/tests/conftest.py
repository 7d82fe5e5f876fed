# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile

# settings are read at import time: point the app at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix="handoff-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'handoff_test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_MODE"] = "dev"
os.environ["DEV_AUTO_PROVISION"] = "true"
os.environ["JWT_SECRET"] = "handoff-test-secret-0123456789abcdef"
for _k in ("STRIPE_API_KEY", "CELERY_BROKER_URL", "CELERY_RESULT_BACKEND", "ACCESS_CODE_MAX_ATTEMPTS"):
    os.environ.pop(_k, None)

from dataclasses import dataclass, field
from datetime import datetime

import pytest

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.clients.payment_gateway import CancellationReport, PaymentGatewayError
from app.db import Base, SessionLocal, engine
from app.models import (
    AppUser,
    Expense,
    ExpenseCategory,
    Fee,
    Incident,
    Payment,
    Residence,
    ResidentRosterEntry,
)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


class FakeGateway:
    """Records cancellations instead of calling Stripe."""

    def __init__(self, subscriptions: dict[int, list[str]] | None = None, *, fail: bool = False) -> None:
        self.subscriptions = dict(subscriptions or {})
        self.fail = fail
        self.calls: list[int] = []
        self.cancelled: list[str] = []

    def cancel_all_active_subscriptions(self, owner_user_id: int) -> CancellationReport:
        self.calls.append(int(owner_user_id))
        if self.fail:
            raise PaymentGatewayError("gateway unavailable")
        ids = self.subscriptions.pop(int(owner_user_id), [])
        self.cancelled.extend(ids)
        return CancellationReport(owner_user_id=int(owner_user_id), cancelled=list(ids))


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def make_user(db):
    def _make(email: str, *, role: str = "resident", residence_id: int | None = None) -> AppUser:
        u = AppUser(
            email=email.strip().lower(),
            display_name=email.split("@")[0],
            role=role,
            residence_id=residence_id,
            created_at=datetime.utcnow(),
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u

    return _make


@dataclass
class ResidenceWorld:
    residence_id: int
    owner_id: int
    owner_email: str
    replacement_id: int
    replacement_email: str
    other_residence_id: int
    record_ids: dict[str, int] = field(default_factory=dict)


@pytest.fixture
def residence_42(db, make_user) -> ResidenceWorld:
    """
    Residence 42 run by owner@example.com, with one record in most ownership
    categories, plus residence 43 (same syndic) that a handoff of 42 must not touch.
    """
    owner = make_user("owner@example.com", role="syndic")
    replacement = make_user("replacement@example.com")

    r42 = Residence(id=42, name="Les Jardins", address="1 Rue A", city="Rabat", syndic_user_id=owner.id)
    r43 = Residence(id=43, name="Le Parc", address="2 Rue B", city="Rabat", syndic_user_id=owner.id)
    db.add_all([r42, r43])
    db.commit()

    owner.residence_id = 42
    owner.onboarding_completed = True
    db.add(owner)
    db.commit()

    fee = Fee(residence_id=42, title="Monthly", amount=250.0, created_by_user_id=owner.id)
    cat = ExpenseCategory(residence_id=42, name="Cleaning", created_by_user_id=owner.id)
    roster = ResidentRosterEntry(residence_id=42, apartment_number="B4", managed_by_user_id=owner.id)
    incident = Incident(residence_id=42, title="Leak", assigned_to_user_id=owner.id)
    other_fee = Fee(residence_id=43, title="Monthly", amount=300.0, created_by_user_id=owner.id)
    db.add_all([fee, cat, roster, incident, other_fee])
    db.commit()

    expense = Expense(residence_id=42, category_id=cat.id, description="Stairs", amount=80.0, created_by_user_id=owner.id)
    payment = Payment(
        residence_id=42,
        fee_id=fee.id,
        amount=250.0,
        recorded_by_user_id=owner.id,
        verified_by_user_id=owner.id,
    )
    db.add_all([expense, payment])
    db.commit()

    return ResidenceWorld(
        residence_id=42,
        owner_id=int(owner.id),
        owner_email=owner.email,
        replacement_id=int(replacement.id),
        replacement_email=replacement.email,
        other_residence_id=43,
        record_ids={
            "fee": int(fee.id),
            "expense_category": int(cat.id),
            "expense": int(expense.id),
            "payment": int(payment.id),
            "roster": int(roster.id),
            "incident": int(incident.id),
            "other_fee": int(other_fee.id),
        },
    )
