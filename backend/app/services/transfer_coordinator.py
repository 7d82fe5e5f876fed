# backend/app/services/transfer_coordinator.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.payment_gateway import CancellationReport, StripeGateway
from ..config import settings
from ..domain import handoff_states as hs
from ..domain.audit import record_handoff_event
from ..domain.errors import (
    CodeAlreadyUsed,
    CodeNotFound,
    Forbidden,
    InvalidAction,
    ResidenceNotFound,
    TransferConflict,
    WaitingForReplacement,
)
from ..models import AccessCode, Residence
from . import code_store
from .account_directory import AccountDirectory
from .attempt_tracker import attempts_remaining
from .code_validator import NOT_FOUND, Verdict, rejection_for, validate
from .ownership_transfer import TransferReport, transfer
from .remediation import NOTHING_TO_DELETE, RemediationOutcome, remediate_exhausted_claimant

log = logging.getLogger("handoff.coordinator")

# -----------------------------------------------------------------------------
# Transfer Coordinator
# -----------------------------------------------------------------------------
# Two ways to finish a handoff, one way to execute it:
#
#   finalize_transfer  (owner confirms, claimant must have claimed first)
#   complete_claim     (claimant finishes alone; the code's bound email is the
#                       owner's pre-authorization)
#
# both -> _complete_transfer:
#   data_transferring -> ownership transfer -> role swap -> role_swapped
#   -> cancel owner subscriptions (best effort) -> subscriptions_cancelled
#   -> atomic mark-used -> complete
#
# Nothing is held in memory between requests; every step re-reads the row.
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[str]
    attempts_remaining: int
    code_deleted: bool
    account_deleted: bool
    action_type: Optional[str] = None
    residence_id: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": self.accepted,
            "reason": self.reason,
            "attempts_remaining": self.attempts_remaining,
            "code_deleted": self.code_deleted,
            "account_deleted": self.account_deleted,
            "action_type": self.action_type,
            "residence_id": self.residence_id,
        }


@dataclass(frozen=True)
class TransferOutcome:
    code: str
    state: str
    claimant_user_id: int
    original_user_id: int
    residence_id: int
    action_type: str
    # lost the mark-used race to the same account: nothing left to do
    already_used: bool = False
    transfer: Optional[TransferReport] = None
    subscriptions: Optional[CancellationReport] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "code": code_store.mask_code(self.code),
            "state": self.state,
            "claimant_user_id": self.claimant_user_id,
            "original_user_id": self.original_user_id,
            "residence_id": self.residence_id,
            "action_type": self.action_type,
            "already_used": self.already_used,
            "transfer": self.transfer.as_dict() if self.transfer else None,
            "subscriptions": self.subscriptions.as_dict() if self.subscriptions else None,
        }


def _default_enqueue_retry(owner_user_id: int) -> None:
    if not settings.celery_broker_url:
        return
    from ..workers.handoff_tasks import retry_subscription_cancellation

    retry_subscription_cancellation.delay(int(owner_user_id))


class TransferCoordinator:
    def __init__(
        self,
        db: Session,
        *,
        gateway: Optional[Any] = None,
        directory: Optional[AccountDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None,
        enqueue_retry: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.db = db
        self.gateway = gateway if gateway is not None else StripeGateway(db)
        self.directory = directory or AccountDirectory(db)
        self.clock = clock or datetime.utcnow
        self.enqueue_retry = enqueue_retry or _default_enqueue_retry

    # ------------------------------------------------------------------
    # Issue / cancel (owner side)
    # ------------------------------------------------------------------
    def issue_code(
        self,
        *,
        owner_id: int,
        replacement_email: str,
        residence_id: int,
        action_type: str = hs.ACTION_CHANGE_ROLE,
        ttl: Optional[timedelta] = None,
    ) -> AccessCode:
        residence = self.db.scalar(select(Residence).where(Residence.id == int(residence_id)))
        if residence is None:
            raise ResidenceNotFound()
        if residence.syndic_user_id is None or int(residence.syndic_user_id) != int(owner_id):
            raise Forbidden("Only the residence syndic can start a handoff")

        owner = self.directory.must_get(owner_id)
        if code_store.normalize_email(owner.email) == code_store.normalize_email(replacement_email):
            raise InvalidAction("The replacement email must differ from your own")

        row = code_store.issue(
            self.db,
            original_user_id=owner_id,
            replacement_email=replacement_email,
            residence_id=residence_id,
            action_type=action_type,
            ttl=ttl,
        )
        record_handoff_event(
            self.db,
            residence_id=int(residence_id),
            actor_user_id=int(owner_id),
            event="code_issued",
            entity_type="AccessCode",
            entity_id=str(row.id),
            after={"replacement_email": row.replacement_email, "action_type": row.action_type, "expires_at": row.expires_at},
        )
        return row

    def cancel_code(self, *, code: str, requester_id: int) -> dict[str, Any]:
        snapshot = code_store.cancel(self.db, code=code, requester_id=requester_id)
        record_handoff_event(
            self.db,
            residence_id=snapshot.get("residence_id"),
            actor_user_id=int(requester_id),
            event="code_cancelled",
            entity_type="AccessCode",
            entity_id=str(snapshot["id"]),
            before=snapshot,
            after={"state": hs.ABORTED_BY_OWNER},
        )
        return {"ok": True, "state": hs.ABORTED_BY_OWNER}

    # ------------------------------------------------------------------
    # Validation (claimant side)
    # ------------------------------------------------------------------
    def _validate(
        self,
        *,
        code: str,
        claimant_email: str,
        claimant_user_id: Optional[int] = None,
        record_failures: bool = True,
    ) -> tuple[Verdict, RemediationOutcome]:
        """The one place attempt accounting and exhaustion remediation happen."""
        verdict = validate(
            self.db,
            code=code,
            claimant_email=claimant_email,
            now=self.clock(),
            claimant_user_id=claimant_user_id,
            record_failures=record_failures,
        )
        remediation = NOTHING_TO_DELETE
        if verdict.code_invalidated:
            row = verdict.access_code
            remediation = remediate_exhausted_claimant(
                self.db,
                claimant_email=claimant_email,
                code=code,
                residence_id=int(row.residence_id) if row is not None else None,
                protected_user_ids=[int(row.original_user_id)] if row is not None else [],
                directory=self.directory,
            )
        return verdict, remediation

    def _validate_or_raise(self, **kw: Any) -> AccessCode:
        verdict, remediation = self._validate(**kw)
        if not verdict.accepted:
            raise rejection_for(verdict, account_deleted=remediation.account_deleted)
        return verdict.access_code

    def _result(self, verdict: Verdict, remediation: RemediationOutcome) -> ValidationResult:
        row = verdict.access_code
        return ValidationResult(
            accepted=verdict.accepted,
            reason=None if verdict.accepted else verdict.reason,
            attempts_remaining=verdict.attempts_remaining,
            code_deleted=verdict.code_invalidated or (not verdict.accepted and verdict.reason != NOT_FOUND and verdict.attempts_remaining == 0),
            account_deleted=remediation.account_deleted,
            action_type=row.action_type if (row is not None and verdict.accepted) else None,
            residence_id=int(row.residence_id) if (row is not None and verdict.accepted) else None,
        )

    def validate_code(self, *, code: str, claimant_email: str, claimant_user_id: Optional[int] = None) -> ValidationResult:
        verdict, remediation = self._validate(code=code, claimant_email=claimant_email, claimant_user_id=claimant_user_id)
        return self._result(verdict, remediation)

    def validate_for_user(self, *, code: str, claimant_email: str) -> ValidationResult:
        """Pre-signup entry point: same rules, no account required."""
        account = self.directory.find_by_email(claimant_email)
        verdict, remediation = self._validate(
            code=code,
            claimant_email=claimant_email,
            claimant_user_id=int(account.id) if account is not None else None,
        )
        return self._result(verdict, remediation)

    # ------------------------------------------------------------------
    # Claim (ISSUED -> CLAIM_PENDING)
    # ------------------------------------------------------------------
    def claim_code(self, *, code: str, claimant_id: int, claimant_email: str) -> AccessCode:
        row = self._validate_or_raise(code=code, claimant_email=claimant_email, claimant_user_id=claimant_id)
        if int(row.original_user_id) == int(claimant_id):
            raise Forbidden("You cannot claim your own access code")

        row = code_store.mark_claimed(self.db, access_code=row, claimant_id=claimant_id)
        record_handoff_event(
            self.db,
            residence_id=int(row.residence_id),
            actor_user_id=int(claimant_id),
            event="code_claimed",
            entity_type="AccessCode",
            entity_id=str(row.id),
            after={"state": row.state},
        )
        return row

    # ------------------------------------------------------------------
    # Completion entry points
    # ------------------------------------------------------------------
    def finalize_transfer(self, *, code: str, owner_id: int) -> TransferOutcome:
        """Two-party path: the issuer confirms after the claimant has claimed."""
        row = code_store.must_find(self.db, code)
        if int(row.original_user_id) != int(owner_id):
            raise Forbidden()
        if row.action_type != hs.ACTION_CHANGE_ROLE:
            raise InvalidAction("This endpoint is only for role change validation")
        if row.code_used:
            raise CodeAlreadyUsed()
        if row.claimed_by_user_id is None:
            raise WaitingForReplacement()

        claimant = self.directory.get(int(row.claimed_by_user_id))
        if claimant is None:
            raise WaitingForReplacement("The replacement account no longer exists")

        # owner presents no guess: a failed re-validation is not a claimant attempt
        row = self._validate_or_raise(
            code=code,
            claimant_email=claimant.email,
            claimant_user_id=int(claimant.id),
            record_failures=False,
        )
        return self._complete_transfer(row, claimant_id=int(claimant.id), actor_user_id=int(owner_id))

    def complete_claim(self, *, code: str, claimant_id: int, claimant_email: str) -> TransferOutcome:
        """One-party path: the bound replacement account finishes the handoff itself."""
        # a replay by the consuming account is rejected as already_used but not counted
        row = self._validate_or_raise(code=code, claimant_email=claimant_email, claimant_user_id=claimant_id)
        if int(row.original_user_id) == int(claimant_id):
            raise Forbidden("You cannot redeem your own access code")
        if row.claimed_by_user_id is not None and int(row.claimed_by_user_id) != int(claimant_id):
            raise TransferConflict("This code has already been claimed by another account")

        self.directory.must_get(claimant_id)
        return self._complete_transfer(row, claimant_id=int(claimant_id), actor_user_id=int(claimant_id))

    # ------------------------------------------------------------------
    # Shared completion core
    # ------------------------------------------------------------------
    def _complete_transfer(self, row: AccessCode, *, claimant_id: int, actor_user_id: int) -> TransferOutcome:
        code = str(row.code)
        original_id = int(row.original_user_id)
        residence_id = int(row.residence_id)
        action_type = str(row.action_type)
        is_role_change = action_type == hs.ACTION_CHANGE_ROLE

        def outcome(state: str, **kw: Any) -> TransferOutcome:
            return TransferOutcome(
                code=code,
                state=state,
                claimant_user_id=claimant_id,
                original_user_id=original_id,
                residence_id=residence_id,
                action_type=action_type,
                **kw,
            )

        if not code_store.advance_state(self.db, access_code=row, target=hs.DATA_TRANSFERRING):
            return self._resolve_finished(code, claimant_id=claimant_id, outcome=outcome)

        report: Optional[TransferReport] = None
        if is_role_change:
            report = transfer(self.db, from_user_id=original_id, to_user_id=claimant_id, residence_id=residence_id)

        self.directory.set_role(
            claimant_id,
            role=hs.ROLE_SYNDIC,
            residence_id=residence_id,
            onboarding_completed=True,
        )
        if is_role_change and original_id != claimant_id and self.directory.get(original_id) is not None:
            self.directory.set_role(original_id, role=hs.ROLE_RESIDENT)
        self.db.commit()
        code_store.advance_state(self.db, access_code=row, target=hs.ROLE_SWAPPED)
        log.info("handoff roles swapped", extra={"code": code_store.mask_code(code), "user_id": claimant_id, "residence_id": residence_id})

        subs: Optional[CancellationReport] = None
        if is_role_change:
            subs = self._cancel_owner_subscriptions(original_id)
            code_store.advance_state(self.db, access_code=row, target=hs.SUBSCRIPTIONS_CANCELLED)

        won = code_store.mark_used(self.db, access_code=row, account_id=claimant_id)
        if won:
            record_handoff_event(
                self.db,
                residence_id=residence_id,
                actor_user_id=actor_user_id,
                event="completed",
                entity_type="AccessCode",
                entity_id=str(row.id),
                before={"syndic_user_id": original_id},
                after={
                    "syndic_user_id": claimant_id,
                    "transfer": report.as_dict() if report else None,
                    "subscriptions": subs.as_dict() if subs else None,
                },
            )
        return outcome(hs.COMPLETE, already_used=not won, transfer=report, subscriptions=subs)

    def _resolve_finished(self, code: str, *, claimant_id: int, outcome: Callable[..., TransferOutcome]) -> TransferOutcome:
        # the row left the resumable states between validation and now
        current = code_store.find(self.db, code)
        if current is None:
            raise CodeNotFound("This code no longer exists")
        if current.code_used and current.used_by_user_id is not None and int(current.used_by_user_id) == int(claimant_id):
            return outcome(hs.COMPLETE, already_used=True)
        if current.code_used:
            raise TransferConflict()
        raise CodeAlreadyUsed()

    def _cancel_owner_subscriptions(self, owner_user_id: int) -> CancellationReport:
        try:
            report = self.gateway.cancel_all_active_subscriptions(owner_user_id)
        except Exception as e:
            log.exception("subscription cancellation failed", extra={"user_id": owner_user_id})
            report = CancellationReport(owner_user_id=int(owner_user_id), error=e.__class__.__name__)

        if not report.ok:
            try:
                self.enqueue_retry(int(owner_user_id))
            except Exception:
                log.exception("could not enqueue subscription retry", extra={"user_id": owner_user_id})
        return report

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------
    def check_code_status(self, *, code: str) -> dict[str, Any]:
        row = code_store.find(self.db, code)
        if row is None:
            return {"exists": False, "used": False, "attempts_remaining": 0, "expired": False}
        return {
            "exists": True,
            "used": bool(row.code_used),
            "attempts_remaining": attempts_remaining(row.failed_attempts),
            "expired": bool(row.expires_at and self.clock() > row.expires_at),
            "state": row.state,
            "claimed": row.claimed_by_user_id is not None,
            "action_type": row.action_type,
        }

    def check_replacement_email(self, *, email: str) -> Optional[dict[str, Any]]:
        row = code_store.find_pending_for_email(self.db, email, now=self.clock())
        if row is None:
            return None
        return {
            "residence_id": int(row.residence_id),
            "action_type": row.action_type,
            "expires_at": row.expires_at,
            "attempts_remaining": attempts_remaining(row.failed_attempts),
        }

    def list_issued_codes(self, *, owner_id: int) -> list[AccessCode]:
        return code_store.list_issued_by(self.db, owner_id)
