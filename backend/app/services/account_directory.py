# backend/app/services/account_directory.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..domain import handoff_states as hs
from ..domain.errors import AccountNotFound
from ..models import AccessCode, AppUser, BillingCustomer, DocumentSubmission, Fee, Incident, Payment, ResidentRosterEntry
from .code_store import normalize_email
from .ownership_transfer import release_ownership

log = logging.getLogger("handoff.accounts")


class AccountDirectory:
    """
    Account lookups and account-level writes used by the handoff protocol.

    Holds the session it was built with; callers own the transaction except
    for delete_account_cascade, which commits (it is a standalone, irreversible
    action).
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_email(self, email: str) -> Optional[AppUser]:
        e = normalize_email(email)
        if not e:
            return None
        return self.db.scalar(select(AppUser).where(AppUser.email == e))

    def get(self, user_id: int) -> Optional[AppUser]:
        return self.db.scalar(select(AppUser).where(AppUser.id == int(user_id)))

    def must_get(self, user_id: int) -> AppUser:
        u = self.get(user_id)
        if u is None:
            raise AccountNotFound()
        return u

    def set_role(
        self,
        user_id: int,
        *,
        role: str,
        residence_id: Optional[int] = None,
        onboarding_completed: Optional[bool] = None,
    ) -> AppUser:
        u = self.must_get(user_id)
        u.role = role
        if residence_id is not None:
            u.residence_id = int(residence_id)
        if onboarding_completed is not None:
            u.onboarding_completed = bool(onboarding_completed)
        self.db.add(u)
        return u

    def delete_account_cascade(self, user_id: int) -> dict[str, int]:
        """
        Irreversibly delete an account and the records that exist only for it.

        Residence-scoped data the account merely owned is kept and detached
        (owner column set to NULL); roster seats, document submissions, the
        billing link and codes it issued but nobody consumed go with it.
        """
        db = self.db
        uid = int(user_id)
        out: dict[str, int] = {}

        out["resident_roster_seats"] = int(
            db.execute(delete(ResidentRosterEntry).where(ResidentRosterEntry.resident_user_id == uid)).rowcount or 0
        )
        out["document_submissions_deleted"] = int(
            db.execute(delete(DocumentSubmission).where(DocumentSubmission.user_id == uid)).rowcount or 0
        )
        out["billing_customers"] = int(
            db.execute(delete(BillingCustomer).where(BillingCustomer.user_id == uid)).rowcount or 0
        )
        # only after the account's own rows are gone: release nulls document_submissions.user_id
        out.update(release_ownership(db, user_id=uid))
        db.execute(update(Fee).where(Fee.resident_user_id == uid).values(resident_user_id=None))
        db.execute(update(Payment).where(Payment.payer_user_id == uid).values(payer_user_id=None))
        db.execute(update(Incident).where(Incident.reported_by_user_id == uid).values(reported_by_user_id=None))

        out["open_codes_issued"] = int(
            db.execute(
                delete(AccessCode).where(
                    AccessCode.original_user_id == uid,
                    AccessCode.code_used.is_(False),
                    AccessCode.state.in_(hs.CANCELLABLE_STATES),
                )
            ).rowcount
            or 0
        )
        db.execute(
            update(AccessCode)
            .where(AccessCode.claimed_by_user_id == uid, AccessCode.state == hs.CLAIM_PENDING)
            .values(claimed_by_user_id=None, claimed_at=None, state=hs.ISSUED)
        )

        out["accounts"] = int(db.execute(delete(AppUser).where(AppUser.id == uid)).rowcount or 0)
        db.commit()

        log.warning("account deleted", extra={"user_id": uid})
        return out
