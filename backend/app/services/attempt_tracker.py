# backend/app/services/attempt_tracker.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import AccessCode
from .code_store import mask_code, normalize_email

log = logging.getLogger("handoff.attempts")


@dataclass(frozen=True)
class AttemptOutcome:
    failed_attempts: int
    attempts_remaining: int
    # True only for the increment that reached the limit
    code_invalidated: bool

    def as_dict(self) -> dict:
        return {
            "failed_attempts": self.failed_attempts,
            "attempts_remaining": self.attempts_remaining,
            "code_invalidated": self.code_invalidated,
        }


def max_attempts() -> int:
    return int(settings.access_code_max_attempts)


def attempts_remaining(failed_attempts: Optional[int]) -> int:
    return max(0, max_attempts() - int(failed_attempts or 0))


def record_failure(db: Session, *, access_code: AccessCode, claimant_email: str) -> AttemptOutcome:
    """
    Count one failed attempt against the code (shared by every claimant).

    The increment is a single conditional UPDATE so concurrent guesses are
    serialized by the database, and it is committed immediately: the caller is
    about to raise, and the request rollback must not undo the count.
    """
    limit = max_attempts()
    bumped = db.execute(
        update(AccessCode)
        .where(AccessCode.id == access_code.id, AccessCode.failed_attempts < limit)
        .values(failed_attempts=AccessCode.failed_attempts + 1)
        .returning(AccessCode.failed_attempts)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    db.commit()

    if bumped is None:
        # already at the limit (or gone): nothing left to count
        current = db.scalar(select(AccessCode.failed_attempts).where(AccessCode.id == access_code.id))
        current = int(current if current is not None else limit)
        invalidated = False
    else:
        current = int(bumped)
        invalidated = current == limit

    if invalidated:
        log.warning(
            "access code exhausted",
            extra={"code": mask_code(access_code.code), "claimant_email": normalize_email(claimant_email)},
        )
    else:
        log.info(
            "access code failed attempt",
            extra={"code": mask_code(access_code.code), "failed_attempts": current},
        )

    return AttemptOutcome(
        failed_attempts=current,
        attempts_remaining=attempts_remaining(current),
        code_invalidated=invalidated,
    )
