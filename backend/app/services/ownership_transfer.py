# backend/app/services/ownership_transfer.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.errors import PartialTransferFailure
from ..models import (
    Announcement,
    ContributionPlan,
    DocumentSubmission,
    Expense,
    ExpenseCategory,
    Fee,
    Incident,
    Payment,
    Residence,
    ResidentRosterEntry,
)

log = logging.getLogger("handoff.transfer")

# -----------------------------------------------------------------------------
# Residence ownership set
# -----------------------------------------------------------------------------
# Every record whose owning-account column follows the syndic seat. Order is
# fixed: the residence row first, dependent child records after. A partial
# failure therefore always leaves a prefix of this list done, and re-running
# the transfer resumes at the first category that still has rows owned by the
# previous account.
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OwnershipCategory:
    name: str
    model: Any
    owner_attr: str
    # None => the row *is* the residence (scoped by primary key)
    residence_attr: Optional[str] = "residence_id"

    @property
    def owner_column(self):
        return getattr(self.model, self.owner_attr)

    def scope(self, residence_id: Optional[int]) -> list:
        if residence_id is None:
            return []
        if self.residence_attr is None:
            return [self.model.id == int(residence_id)]
        return [getattr(self.model, self.residence_attr) == int(residence_id)]


RESIDENCE_OWNERSHIP_SET: tuple[OwnershipCategory, ...] = (
    OwnershipCategory("residence", Residence, "syndic_user_id", residence_attr=None),
    OwnershipCategory("resident_roster", ResidentRosterEntry, "managed_by_user_id"),
    OwnershipCategory("fee_definitions", Fee, "created_by_user_id"),
    OwnershipCategory("expense_categories", ExpenseCategory, "created_by_user_id"),
    OwnershipCategory("expenses", Expense, "created_by_user_id"),
    OwnershipCategory("payments", Payment, "recorded_by_user_id"),
    OwnershipCategory("payment_verifications", Payment, "verified_by_user_id"),
    OwnershipCategory("contribution_plans", ContributionPlan, "created_by_user_id"),
    OwnershipCategory("document_submissions", DocumentSubmission, "user_id"),
    OwnershipCategory("announcements", Announcement, "created_by_user_id"),
    OwnershipCategory("incidents", Incident, "assigned_to_user_id"),
)

CATEGORY_NAMES = [c.name for c in RESIDENCE_OWNERSHIP_SET]


@dataclass
class TransferReport:
    from_user_id: int
    to_user_id: int
    residence_id: Optional[int]
    moved: dict[str, int] = field(default_factory=dict)
    # categories with nothing left to move (already done or never populated)
    unchanged: list[str] = field(default_factory=list)

    @property
    def completed_steps(self) -> list[str]:
        return [c for c in CATEGORY_NAMES if c in self.moved or c in self.unchanged]

    @property
    def rows_moved(self) -> int:
        return sum(self.moved.values())

    def as_dict(self) -> dict:
        return {
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "residence_id": self.residence_id,
            "moved": dict(self.moved),
            "unchanged": list(self.unchanged),
            "rows_moved": self.rows_moved,
        }


def _owned_count(db: Session, cat: OwnershipCategory, *, owner_id: int, residence_id: Optional[int]) -> int:
    q = select(func.count()).select_from(cat.model).where(cat.owner_column == int(owner_id), *cat.scope(residence_id))
    return int(db.scalar(q) or 0)


def _repoint(db: Session, cat: OwnershipCategory, *, from_id: int, to_id: int, residence_id: Optional[int]) -> int:
    pending = _owned_count(db, cat, owner_id=from_id, residence_id=residence_id)
    if pending == 0:
        return 0

    n = db.execute(
        update(cat.model)
        .where(cat.owner_column == int(from_id), *cat.scope(residence_id))
        .values({cat.owner_attr: int(to_id)})
        .execution_options(synchronize_session=False)
    ).rowcount
    return int(n or 0)


def transfer(
    db: Session,
    *,
    from_user_id: int,
    to_user_id: int,
    residence_id: Optional[int] = None,
) -> TransferReport:
    """
    Re-point every category of RESIDENCE_OWNERSHIP_SET from one account to another.

    - One commit per category; no cross-category transaction.
    - Check-before-write per category, so a second run (or a concurrent one)
      finds nothing owned by `from_user_id` and writes nothing.
    - On the first failing category: roll back that category, raise
      PartialTransferFailure listing what is already done.
    """
    report = TransferReport(from_user_id=int(from_user_id), to_user_id=int(to_user_id), residence_id=residence_id)
    if int(from_user_id) == int(to_user_id):
        report.unchanged = list(CATEGORY_NAMES)
        return report

    for cat in RESIDENCE_OWNERSHIP_SET:
        try:
            n = _repoint(db, cat, from_id=from_user_id, to_id=to_user_id, residence_id=residence_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error(
                "ownership transfer failed",
                extra={"category": cat.name, "residence_id": residence_id, "user_id": to_user_id},
                exc_info=True,
            )
            raise PartialTransferFailure(
                completed_steps=report.completed_steps,
                failed_step=cat.name,
                cause=e.__class__.__name__,
            ) from e

        if n:
            report.moved[cat.name] = n
            log.info("ownership category transferred", extra={"category": cat.name, "rows": n, "residence_id": residence_id})
        else:
            report.unchanged.append(cat.name)

    log.info("ownership transfer complete", extra={"residence_id": residence_id, "user_id": to_user_id})
    return report


def release_ownership(db: Session, *, user_id: int) -> dict[str, int]:
    """
    Null out every ownership reference to an account (all residences).
    Used by the account-deletion cascade; does not commit.
    """
    out: dict[str, int] = {}
    for cat in RESIDENCE_OWNERSHIP_SET:
        n = db.execute(
            update(cat.model)
            .where(cat.owner_column == int(user_id))
            .values({cat.owner_attr: None})
            .execution_options(synchronize_session=False)
        ).rowcount
        if n:
            out[cat.name] = int(n)
    return out
