# backend/app/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.domain.handoff_states import ROLE_SYNDIC
from app.models import (
    Announcement,
    AppUser,
    ExpenseCategory,
    Fee,
    Incident,
    Residence,
    ResidentRosterEntry,
)
from app.services.transfer_coordinator import TransferCoordinator


@dataclass(frozen=True)
class SeedResult:
    residence_id: int
    syndic_email: str
    replacement_email: Optional[str]
    code: Optional[str]


def _get_or_create_user(db: Session, email: str, display_name: str, role: str = "resident") -> AppUser:
    row = db.scalar(select(AppUser).where(AppUser.email == email))
    if row:
        return row
    row = AppUser(email=email, display_name=display_name, role=role)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _get_or_create_residence(db: Session, name: str, syndic: AppUser) -> Residence:
    row = db.scalar(select(Residence).where(Residence.name == name))
    if row:
        return row
    row = Residence(name=name, address="12 Rue des Lilas", city="Casablanca", syndic_user_id=int(syndic.id))
    db.add(row)
    db.commit()
    db.refresh(row)

    syndic.role = ROLE_SYNDIC
    syndic.residence_id = int(row.id)
    syndic.onboarding_completed = True
    db.add(syndic)
    db.commit()
    return row


def _seed_records(db: Session, residence: Residence, syndic: AppUser) -> None:
    rid, sid = int(residence.id), int(syndic.id)
    if db.scalar(select(Fee.id).where(Fee.residence_id == rid)) is not None:
        return
    db.add_all(
        [
            ResidentRosterEntry(residence_id=rid, apartment_number="A1", managed_by_user_id=sid),
            ResidentRosterEntry(residence_id=rid, apartment_number="A2", managed_by_user_id=sid),
            Fee(residence_id=rid, title="Monthly fee", amount=300.0, created_by_user_id=sid),
            ExpenseCategory(residence_id=rid, name="Cleaning", created_by_user_id=sid),
            Announcement(residence_id=rid, title="Welcome", created_by_user_id=sid),
            Incident(residence_id=rid, title="Lift noise", assigned_to_user_id=sid),
        ]
    )
    db.commit()


def seed_demo(
    *,
    residence_name: str = "Residence Demo",
    syndic_email: str = "syndic@demo.local",
    replacement_email: Optional[str] = None,
) -> SeedResult:
    """
    Idempotent-ish demo seed: one residence, its syndic, a few owned records.
    With replacement_email set, also issues a handoff code for that address.
    """
    db = SessionLocal()
    try:
        syndic = _get_or_create_user(db, syndic_email.strip().lower(), syndic_email.split("@")[0])
        residence = _get_or_create_residence(db, residence_name, syndic)
        _seed_records(db, residence, syndic)

        code: Optional[str] = None
        if replacement_email:
            row = TransferCoordinator(db).issue_code(
                owner_id=int(syndic.id),
                replacement_email=replacement_email,
                residence_id=int(residence.id),
            )
            code = str(row.code)

        return SeedResult(
            residence_id=int(residence.id),
            syndic_email=str(syndic.email),
            replacement_email=replacement_email,
            code=code,
        )
    finally:
        db.close()
