# backend/app/services/remediation.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..domain.audit import record_handoff_event
from .account_directory import AccountDirectory
from .code_store import mask_code, normalize_email

log = logging.getLogger("handoff.remediation")


@dataclass(frozen=True)
class RemediationOutcome:
    account_found: bool
    account_deleted: bool
    user_id: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "account_found": self.account_found,
            "account_deleted": self.account_deleted,
            "user_id": self.user_id,
            "error": self.error,
        }


NOTHING_TO_DELETE = RemediationOutcome(account_found=False, account_deleted=False)


def remediate_exhausted_claimant(
    db: Session,
    *,
    claimant_email: str,
    code: str,
    residence_id: Optional[int] = None,
    protected_user_ids: Iterable[int] = (),
    directory: Optional[AccountDirectory] = None,
) -> RemediationOutcome:
    """
    Attempt exhaustion: delete the account that presented the guesses.

    Best effort by contract. Whatever happens here, the caller still delivers
    its rejection; failures are logged and reported as account_deleted=False.
    The code's issuer is never a target of its own code.
    """
    directory = directory or AccountDirectory(db)
    email = normalize_email(claimant_email)

    try:
        account = directory.find_by_email(email)
    except Exception:
        db.rollback()
        log.exception("remediation lookup failed", extra={"code": mask_code(code)})
        return RemediationOutcome(account_found=False, account_deleted=False, error="lookup_failed")

    if account is None:
        log.info("remediation: no account for claimant email", extra={"code": mask_code(code)})
        return NOTHING_TO_DELETE

    uid = int(account.id)
    if uid in {int(x) for x in protected_user_ids}:
        log.warning("remediation skipped for code issuer", extra={"code": mask_code(code), "user_id": uid})
        return RemediationOutcome(account_found=True, account_deleted=False, user_id=uid, error="protected_account")

    try:
        removed = directory.delete_account_cascade(uid)
    except Exception as e:
        db.rollback()
        log.exception("remediation delete failed", extra={"code": mask_code(code), "user_id": uid})
        return RemediationOutcome(account_found=True, account_deleted=False, user_id=uid, error=e.__class__.__name__)

    try:
        record_handoff_event(
            db,
            residence_id=residence_id,
            actor_user_id=None,
            event="claimant_deleted",
            entity_type="AppUser",
            entity_id=str(uid),
            before={"email": email},
            after={"removed": removed, "code": mask_code(code)},
        )
    except Exception:
        db.rollback()
        log.exception("remediation audit write failed", extra={"user_id": uid})

    return RemediationOutcome(account_found=True, account_deleted=bool(removed.get("accounts")), user_id=uid)
