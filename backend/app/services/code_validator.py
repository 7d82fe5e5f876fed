# backend/app/services/code_validator.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.errors import REJECTIONS_BY_REASON, ValidationRejected
from ..models import AccessCode
from . import code_store
from .attempt_tracker import attempts_remaining, max_attempts, record_failure

NOT_FOUND = "not_found"
ALREADY_USED = "already_used"
EXPIRED = "expired"
EMAIL_MISMATCH = "email_mismatch"
TOO_MANY_ATTEMPTS = "too_many_attempts"

# checked in this order; the first that applies wins
REJECTION_ORDER = (NOT_FOUND, ALREADY_USED, EXPIRED, EMAIL_MISMATCH, TOO_MANY_ATTEMPTS)


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    access_code: Optional[AccessCode]
    reason: Optional[str] = None
    attempts_remaining: int = 0
    # the failed attempt recorded by this call exhausted the code
    code_invalidated: bool = False
    attempt_recorded: bool = False


def check(row: Optional[AccessCode], claimant_email: str, now: datetime) -> Optional[str]:
    """Pure rule check. Returns the rejection reason or None when the pair is acceptable."""
    if row is None:
        return NOT_FOUND
    if row.code_used:
        return ALREADY_USED
    if row.expires_at is not None and now > row.expires_at:
        return EXPIRED
    if code_store.normalize_email(claimant_email) != code_store.normalize_email(row.replacement_email):
        return EMAIL_MISMATCH
    if int(row.failed_attempts or 0) >= max_attempts():
        return TOO_MANY_ATTEMPTS
    return None


def _is_benign_replay(row: AccessCode, reason: str, claimant_user_id: Optional[int]) -> bool:
    # the account that consumed the code asking again (retry after success)
    return (
        reason == ALREADY_USED
        and claimant_user_id is not None
        and row.used_by_user_id is not None
        and int(row.used_by_user_id) == int(claimant_user_id)
    )


def validate(
    db: Session,
    *,
    code: str,
    claimant_email: str,
    now: Optional[datetime] = None,
    claimant_user_id: Optional[int] = None,
    record_failures: bool = True,
) -> Verdict:
    """
    Check a (code, verified email) pair against the store.

    Every rejection except not_found counts one failed attempt on the code,
    unless it is the consuming account replaying a finished handoff or the
    caller opted out (owner-side re-validation presents no guess).
    """
    now = now or datetime.utcnow()
    row = code_store.find(db, code)
    reason = check(row, claimant_email, now)

    if reason is None:
        return Verdict(accepted=True, access_code=row, attempts_remaining=attempts_remaining(row.failed_attempts))

    if reason == NOT_FOUND:
        return Verdict(accepted=False, access_code=None, reason=reason, attempts_remaining=0)

    if not record_failures or _is_benign_replay(row, reason, claimant_user_id):
        return Verdict(
            accepted=False,
            access_code=row,
            reason=reason,
            attempts_remaining=attempts_remaining(row.failed_attempts),
        )

    outcome = record_failure(db, access_code=row, claimant_email=claimant_email)
    return Verdict(
        accepted=False,
        access_code=row,
        reason=reason,
        attempts_remaining=outcome.attempts_remaining,
        code_invalidated=outcome.code_invalidated,
        attempt_recorded=True,
    )


def rejection_for(
    verdict: Verdict,
    *,
    account_deleted: Optional[bool] = None,
) -> ValidationRejected:
    cls = REJECTIONS_BY_REASON[verdict.reason or NOT_FOUND]
    if verdict.reason == NOT_FOUND:
        return cls()
    return cls(
        attempts_remaining=verdict.attempts_remaining,
        code_deleted=verdict.code_invalidated or verdict.attempts_remaining == 0,
        account_deleted=account_deleted,
    )
