# backend/app/services/code_store.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..domain import handoff_states as hs
from ..domain.errors import CodeAlreadyUsed, CodeNotFound, Forbidden, InvalidAction, TransferConflict
from ..models import AccessCode

log = logging.getLogger("handoff.code_store")


def _now() -> datetime:
    return datetime.utcnow()


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def mask_code(code: str) -> str:
    c = normalize_code(code)
    return f"{c[:2]}{'*' * max(0, len(c) - 2)}"


def generate_code(length: Optional[int] = None, alphabet: Optional[str] = None) -> str:
    n = int(length or settings.access_code_length)
    chars = alphabet or settings.access_code_alphabet
    return "".join(secrets.choice(chars) for _ in range(n))


def _unique_code(db: Session) -> str:
    code = generate_code()
    while db.scalar(select(AccessCode.id).where(AccessCode.code == code)) is not None:
        code = generate_code()
    return code


def find(db: Session, code: str) -> Optional[AccessCode]:
    return db.scalar(select(AccessCode).where(AccessCode.code == normalize_code(code)))


def must_find(db: Session, code: str) -> AccessCode:
    row = find(db, code)
    if row is None:
        raise CodeNotFound()
    return row


def issue(
    db: Session,
    *,
    original_user_id: int,
    replacement_email: str,
    residence_id: int,
    action_type: str = hs.ACTION_CHANGE_ROLE,
    ttl: Optional[timedelta] = None,
) -> AccessCode:
    """
    Create a fresh code for a handoff.

    An unclaimed open code of the same owner for the same residence is
    withdrawn first: a residence has at most one live handoff. A code the
    replacement already claimed is never dropped this way; the owner has to
    cancel it explicitly (TransferConflict otherwise).
    """
    if action_type not in hs.ACTION_TYPES:
        raise InvalidAction(f"Unknown action_type: {action_type}")

    email = normalize_email(replacement_email)
    if not email or "@" not in email:
        raise InvalidAction("replacement_email is required")

    claimed = db.scalar(
        select(AccessCode.id).where(
            AccessCode.original_user_id == int(original_user_id),
            AccessCode.residence_id == int(residence_id),
            AccessCode.code_used.is_(False),
            AccessCode.claimed_by_user_id.is_not(None),
        )
    )
    if claimed is not None:
        raise TransferConflict("A replacement already claimed the open code; cancel it before issuing a new one")

    superseded = db.execute(
        delete(AccessCode).where(
            AccessCode.original_user_id == int(original_user_id),
            AccessCode.residence_id == int(residence_id),
            AccessCode.code_used.is_(False),
            AccessCode.claimed_by_user_id.is_(None),
            AccessCode.state == hs.ISSUED,
        )
    ).rowcount
    if superseded:
        log.info("superseded open access codes", extra={"user_id": original_user_id, "residence_id": residence_id})

    now = _now()
    row = AccessCode(
        code=_unique_code(db),
        original_user_id=int(original_user_id),
        replacement_email=email,
        action_type=action_type,
        residence_id=int(residence_id),
        state=hs.ISSUED,
        failed_attempts=0,
        code_used=False,
        created_at=now,
        expires_at=now + (ttl if ttl is not None else timedelta(days=int(settings.access_code_ttl_days))),
    )
    db.add(row)
    db.commit()
    db.refresh(row)

    log.info(
        "access code issued",
        extra={"code": mask_code(row.code), "user_id": original_user_id, "residence_id": residence_id},
    )
    return row


def cancel(db: Session, *, code: str, requester_id: int) -> dict:
    """
    Owner withdraws an unused code.

    The delete is conditional on the row still being cancellable so it cannot
    slip in after a finalize has started moving data.
    """
    row = must_find(db, code)
    if int(row.original_user_id) != int(requester_id):
        raise Forbidden()
    if row.code_used or row.state not in hs.CANCELLABLE_STATES:
        raise CodeAlreadyUsed("Cannot cancel: this code has already been used")

    snapshot = row.model_dump()
    deleted = db.execute(
        delete(AccessCode).where(
            AccessCode.id == row.id,
            AccessCode.code_used.is_(False),
            AccessCode.state.in_(hs.CANCELLABLE_STATES),
        )
    ).rowcount
    if not deleted:
        db.rollback()
        raise CodeAlreadyUsed("Cannot cancel: this code has already been used")

    db.commit()
    log.info("access code cancelled", extra={"code": mask_code(snapshot["code"]), "user_id": requester_id})
    return snapshot


def mark_claimed(db: Session, *, access_code: AccessCode, claimant_id: int) -> AccessCode:
    if access_code.claimed_by_user_id is not None and int(access_code.claimed_by_user_id) != int(claimant_id):
        raise TransferConflict("This code has already been claimed by another account")

    n = db.execute(
        update(AccessCode)
        .where(
            AccessCode.id == access_code.id,
            AccessCode.code_used.is_(False),
            AccessCode.state.in_(hs.CANCELLABLE_STATES),
        )
        .values(claimed_by_user_id=int(claimant_id), claimed_at=_now(), state=hs.CLAIM_PENDING)
    ).rowcount
    db.commit()
    if not n:
        db.refresh(access_code)
        if access_code.claimed_by_user_id is not None and int(access_code.claimed_by_user_id) == int(claimant_id):
            return access_code
        raise CodeAlreadyUsed()
    db.refresh(access_code)
    return access_code


def advance_state(db: Session, *, access_code: AccessCode, target: str) -> bool:
    """
    Move the progress marker forward. Never moves backwards, never touches a
    used row. Returns False when the row is gone or already consumed.
    """
    n = db.execute(
        update(AccessCode)
        .where(
            AccessCode.id == access_code.id,
            AccessCode.code_used.is_(False),
            AccessCode.state.in_(hs.states_before(target)),
        )
        .values(state=target)
    ).rowcount
    db.commit()
    if n:
        log.info("handoff state advanced", extra={"code": mask_code(access_code.code), "state": target})
        return True

    # already past target, or gone/consumed
    used = db.scalar(select(AccessCode.code_used).where(AccessCode.id == access_code.id))
    return used is not None and not bool(used)


def mark_used(db: Session, *, access_code: AccessCode, account_id: int) -> bool:
    """
    The single exclusive step of the protocol: used false -> true.

    Returns True for the caller whose write landed, False for a caller that
    lost the race to the same account. Raises TransferConflict when another
    account won. Database errors propagate (the caller must not report
    completion without this write).
    """
    n = db.execute(
        update(AccessCode)
        .where(AccessCode.id == access_code.id, AccessCode.code_used.is_(False))
        .values(code_used=True, used_by_user_id=int(account_id), used_at=_now(), state=hs.COMPLETE)
    ).rowcount
    db.commit()

    if n:
        log.info("access code consumed", extra={"code": mask_code(access_code.code), "user_id": account_id})
        return True

    winner = db.scalar(select(AccessCode.used_by_user_id).where(AccessCode.id == access_code.id))
    if winner is not None and int(winner) == int(account_id):
        log.info("access code already consumed by same account", extra={"code": mask_code(access_code.code)})
        return False
    if winner is None:
        raise CodeNotFound("This code no longer exists")
    raise TransferConflict()


def find_pending_for_email(db: Session, email: str, *, now: Optional[datetime] = None) -> Optional[AccessCode]:
    now = now or _now()
    return db.scalar(
        select(AccessCode)
        .where(
            AccessCode.replacement_email == normalize_email(email),
            AccessCode.code_used.is_(False),
            AccessCode.expires_at >= now,
            AccessCode.failed_attempts < int(settings.access_code_max_attempts),
        )
        .order_by(AccessCode.created_at.desc(), AccessCode.id.desc())
    )


def list_issued_by(db: Session, owner_id: int, *, limit: int = 50) -> list[AccessCode]:
    q = (
        select(AccessCode)
        .where(AccessCode.original_user_id == int(owner_id))
        .order_by(AccessCode.created_at.desc(), AccessCode.id.desc())
        .limit(limit)
    )
    return list(db.scalars(q).all())


def purge_expired(db: Session, *, now: Optional[datetime] = None, retention_days: Optional[int] = None) -> int:
    """Delete unused codes that expired more than `retention_days` ago. Used codes are audit records and stay."""
    now = now or _now()
    days = int(retention_days if retention_days is not None else settings.access_code_retention_days)
    cutoff = now - timedelta(days=days)
    n = db.execute(
        delete(AccessCode).where(
            AccessCode.code_used.is_(False),
            AccessCode.expires_at < cutoff,
            AccessCode.state.in_(hs.CANCELLABLE_STATES),
        )
    ).rowcount
    db.commit()
    return int(n or 0)
