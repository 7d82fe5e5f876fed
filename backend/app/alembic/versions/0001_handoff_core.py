"""handoff core tables (accounts, residences, residence records, billing link, access codes, audit)

Revision ID: 0001_handoff_core
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = "0001_handoff_core"
down_revision = None
branch_labels = None
depends_on = None


def _insp():
    return inspect(op.get_bind())


def _has_table(name: str) -> bool:
    return name in _insp().get_table_names()


def _owner_col(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True)


def upgrade() -> None:
    # -----------------------------
    # app_users
    # -----------------------------
    if not _has_table("app_users"):
        op.create_table(
            "app_users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("display_name", sa.String(length=160), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'resident'")),
            sa.Column("residence_id", sa.Integer(), nullable=True),
            sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_app_users_email", "app_users", ["email"], unique=True)
        op.create_index("ix_app_users_residence_id", "app_users", ["residence_id"], unique=False)

    # -----------------------------
    # residences
    # -----------------------------
    if not _has_table("residences"):
        op.create_table(
            "residences",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("address", sa.String(length=255), nullable=False),
            sa.Column("city", sa.String(length=120), nullable=False),
            sa.Column(
                "syndic_user_id",
                sa.Integer(),
                sa.ForeignKey("app_users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_residences_syndic_user_id", "residences", ["syndic_user_id"], unique=False)

    # -----------------------------
    # resident_roster
    # -----------------------------
    if not _has_table("resident_roster"):
        op.create_table(
            "resident_roster",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            _owner_col("resident_user_id"),
            sa.Column("apartment_number", sa.String(length=20), nullable=True),
            sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            _owner_col("managed_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("residence_id", "apartment_number", name="uq_resident_roster_apartment"),
        )
        op.create_index("ix_resident_roster_residence_id", "resident_roster", ["residence_id"], unique=False)
        op.create_index("ix_resident_roster_resident_user_id", "resident_roster", ["resident_user_id"], unique=False)
        op.create_index("ix_resident_roster_managed_by_user_id", "resident_roster", ["managed_by_user_id"], unique=False)

    # -----------------------------
    # fees
    # -----------------------------
    if not _has_table("fees"):
        op.create_table(
            "fees",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            _owner_col("resident_user_id"),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'unpaid'")),
            _owner_col("created_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_fees_residence_id", "fees", ["residence_id"], unique=False)
        op.create_index("ix_fees_created_by_user_id", "fees", ["created_by_user_id"], unique=False)

    # -----------------------------
    # expense_categories + expenses
    # -----------------------------
    if not _has_table("expense_categories"):
        op.create_table(
            "expense_categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            _owner_col("created_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("residence_id", "name", name="uq_expense_categories_residence_name"),
        )
        op.create_index("ix_expense_categories_residence_id", "expense_categories", ["residence_id"], unique=False)
        op.create_index("ix_expense_categories_created_by_user_id", "expense_categories", ["created_by_user_id"], unique=False)

    if not _has_table("expenses"):
        op.create_table(
            "expenses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("expense_categories.id"), nullable=True),
            sa.Column("description", sa.String(length=255), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("expense_date", sa.Date(), nullable=True),
            _owner_col("created_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_expenses_residence_id", "expenses", ["residence_id"], unique=False)
        op.create_index("ix_expenses_created_by_user_id", "expenses", ["created_by_user_id"], unique=False)

    # -----------------------------
    # payments
    # -----------------------------
    if not _has_table("payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("fee_id", sa.Integer(), sa.ForeignKey("fees.id"), nullable=True),
            _owner_col("payer_user_id"),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("method", sa.String(length=20), nullable=False, server_default=sa.text("'cash'")),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
            _owner_col("recorded_by_user_id"),
            _owner_col("verified_by_user_id"),
            sa.Column("paid_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_payments_residence_id", "payments", ["residence_id"], unique=False)
        op.create_index("ix_payments_recorded_by_user_id", "payments", ["recorded_by_user_id"], unique=False)
        op.create_index("ix_payments_verified_by_user_id", "payments", ["verified_by_user_id"], unique=False)

    # -----------------------------
    # contribution_plans
    # -----------------------------
    if not _has_table("contribution_plans"):
        op.create_table(
            "contribution_plans",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("amount_per_period", sa.Float(), nullable=False),
            sa.Column("period", sa.String(length=20), nullable=False, server_default=sa.text("'monthly'")),
            _owner_col("created_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_contribution_plans_residence_id", "contribution_plans", ["residence_id"], unique=False)
        op.create_index("ix_contribution_plans_created_by_user_id", "contribution_plans", ["created_by_user_id"], unique=False)

    # -----------------------------
    # document_submissions, announcements, incidents
    # -----------------------------
    if not _has_table("document_submissions"):
        op.create_table(
            "document_submissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            _owner_col("user_id"),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=True),
            sa.Column("document_url", sa.String(length=500), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
            sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_document_submissions_user_id", "document_submissions", ["user_id"], unique=False)
        op.create_index("ix_document_submissions_residence_id", "document_submissions", ["residence_id"], unique=False)

    if not _has_table("announcements"):
        op.create_table(
            "announcements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("body", sa.Text(), nullable=True),
            _owner_col("created_by_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_announcements_residence_id", "announcements", ["residence_id"], unique=False)
        op.create_index("ix_announcements_created_by_user_id", "announcements", ["created_by_user_id"], unique=False)

    if not _has_table("incidents"):
        op.create_table(
            "incidents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'open'")),
            _owner_col("reported_by_user_id"),
            _owner_col("assigned_to_user_id"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_incidents_residence_id", "incidents", ["residence_id"], unique=False)
        op.create_index("ix_incidents_assigned_to_user_id", "incidents", ["assigned_to_user_id"], unique=False)

    # -----------------------------
    # billing_customers
    # -----------------------------
    if not _has_table("billing_customers"):
        op.create_table(
            "billing_customers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("stripe_customer_id", sa.String(length=80), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("stripe_customer_id", name="uq_billing_customers_stripe_customer_id"),
        )
        op.create_index("ix_billing_customers_user_id", "billing_customers", ["user_id"], unique=True)

    # -----------------------------
    # access_codes
    # -----------------------------
    if not _has_table("access_codes"):
        op.create_table(
            "access_codes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("original_user_id", sa.Integer(), nullable=False),
            sa.Column("replacement_email", sa.String(length=200), nullable=False),
            sa.Column("action_type", sa.String(length=20), nullable=False, server_default=sa.text("'change_role'")),
            sa.Column("residence_id", sa.Integer(), sa.ForeignKey("residences.id"), nullable=False),
            sa.Column("state", sa.String(length=30), nullable=False, server_default=sa.text("'issued'")),
            sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("claimed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("claimed_at", sa.DateTime(), nullable=True),
            sa.Column("code_used", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("used_by_user_id", sa.Integer(), nullable=True),
            sa.Column("used_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("failed_attempts >= 0", name="ck_access_codes_failed_attempts_nonneg"),
        )
        op.create_index("ix_access_codes_code", "access_codes", ["code"], unique=True)
        op.create_index("ix_access_codes_replacement_email", "access_codes", ["replacement_email"], unique=False)
        op.create_index("ix_access_codes_owner_residence", "access_codes", ["original_user_id", "residence_id"], unique=False)

    # -----------------------------
    # audit_events
    # -----------------------------
    if not _has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("residence_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=80), nullable=False),
            sa.Column("entity_type", sa.String(length=80), nullable=False),
            sa.Column("entity_id", sa.String(length=80), nullable=False),
            sa.Column("before_json", sa.Text(), nullable=True),
            sa.Column("after_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_audit_events_residence_id", "audit_events", ["residence_id"], unique=False)


def downgrade() -> None:
    for name in (
        "audit_events",
        "access_codes",
        "billing_customers",
        "incidents",
        "announcements",
        "document_submissions",
        "contribution_plans",
        "payments",
        "expenses",
        "expense_categories",
        "fees",
        "resident_roster",
        "residences",
        "app_users",
    ):
        if _has_table(name):
            op.drop_table(name)
