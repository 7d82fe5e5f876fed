# backend/app/models.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# -----------------------------
# Accounts + residences
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    role: Mapped[str] = mapped_column(String(20), nullable=False, default="resident")  # resident|syndic
    residence_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Residence(Base):
    __tablename__ = "residences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)

    syndic_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ResidentRosterEntry(Base):
    __tablename__ = "resident_roster"
    __table_args__ = (UniqueConstraint("residence_id", "apartment_number", name="uq_resident_roster_apartment"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    resident_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    apartment_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    managed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Residence financials
# -----------------------------
class Fee(Base):
    __tablename__ = "fees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    resident_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")

    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ExpenseCategory(Base):
    __tablename__ = "expense_categories"
    __table_args__ = (UniqueConstraint("residence_id", "name", name="uq_expense_categories_residence_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("expense_categories.id"), nullable=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    expense_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    fee_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("fees.id"), nullable=True)
    payer_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False, default="cash")  # cash|bank_transfer|online_card|check
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|completed|rejected

    recorded_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    verified_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ContributionPlan(Base):
    __tablename__ = "contribution_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    amount_per_period: Mapped[float] = mapped_column(Float, nullable=False)
    period: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")  # monthly|quarterly|yearly

    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Residence operations
# -----------------------------
class DocumentSubmission(Base):
    __tablename__ = "document_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), index=True, nullable=True)
    residence_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=True)

    document_url: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|approved|rejected
    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Announcement(Base):
    __tablename__ = "announcements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")  # open|in_progress|resolved|closed

    reported_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)
    assigned_to_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Billing
# -----------------------------
class BillingCustomer(Base):
    __tablename__ = "billing_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, unique=True, index=True)
    stripe_customer_id: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Handoff protocol
# -----------------------------
class AccessCode(Base):
    """
    One issued handoff code.

    User id columns are plain integers (no FK): a consumed code is kept as an
    audit record after the accounts it mentions may have been deleted.
    """

    __tablename__ = "access_codes"
    __table_args__ = (
        Index("ix_access_codes_replacement_email", "replacement_email"),
        Index("ix_access_codes_owner_residence", "original_user_id", "residence_id"),
        CheckConstraint("failed_attempts >= 0", name="ck_access_codes_failed_attempts_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    original_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    replacement_email: Mapped[str] = mapped_column(String(200), nullable=False)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False, default="change_role")  # change_role|delete_account
    residence_id: Mapped[int] = mapped_column(Integer, ForeignKey("residences.id"), nullable=False)

    state: Mapped[str] = mapped_column(String(30), nullable=False, default="issued")
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    claimed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    code_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def model_dump(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "original_user_id": self.original_user_id,
            "replacement_email": self.replacement_email,
            "action_type": self.action_type,
            "residence_id": self.residence_id,
            "state": self.state,
            "failed_attempts": self.failed_attempts,
            "claimed_by_user_id": self.claimed_by_user_id,
            "code_used": self.code_used,
            "used_by_user_id": self.used_by_user_id,
            "expires_at": self.expires_at,
        }


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    residence_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
