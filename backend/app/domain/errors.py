# backend/app/domain/errors.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException

from .handoff_states import REJECTED


class HandoffError(HTTPException):
    """
    Base for every protocol failure.

    Services raise these directly (like they raise HTTPException elsewhere);
    routers let them propagate. `reason` is the stable machine-readable tag,
    `detail` is what the client sees.
    """

    status_code_default = 400
    reason = "handoff_error"
    default_message = "Handoff failed"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        detail: dict[str, Any] = {"reason": self.reason, "message": self.message}
        detail.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(status_code=self.status_code_default, detail=detail)


class ValidationRejected(HandoffError):
    """Rejections produced by the code validator. Terminal, never retried."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        attempts_remaining: Optional[int] = None,
        code_deleted: Optional[bool] = None,
        account_deleted: Optional[bool] = None,
    ) -> None:
        self.attempts_remaining = attempts_remaining
        self.code_deleted = bool(code_deleted)
        self.account_deleted = bool(account_deleted)
        super().__init__(
            message,
            state=REJECTED,
            attempts_remaining=attempts_remaining,
            code_deleted=code_deleted,
            account_deleted=account_deleted,
        )


class CodeNotFound(ValidationRejected):
    status_code_default = 404
    reason = "not_found"
    default_message = "Invalid code"


class CodeAlreadyUsed(ValidationRejected):
    status_code_default = 409
    reason = "already_used"
    default_message = "This code has already been used"


class CodeExpired(ValidationRejected):
    status_code_default = 410
    reason = "expired"
    default_message = "This code has expired"


class EmailMismatch(ValidationRejected):
    status_code_default = 403
    reason = "email_mismatch"
    default_message = "This code was not issued for your email address"


class TooManyAttempts(ValidationRejected):
    status_code_default = 429
    reason = "too_many_attempts"
    default_message = "Too many failed attempts; this code is no longer valid"


class Forbidden(HandoffError):
    status_code_default = 403
    reason = "forbidden"
    default_message = "This access code does not belong to you"


class ResidenceNotFound(HandoffError):
    status_code_default = 404
    reason = "residence_not_found"
    default_message = "Residence not found"


class AccountNotFound(HandoffError):
    status_code_default = 404
    reason = "account_not_found"
    default_message = "Account not found"


class InvalidAction(HandoffError):
    status_code_default = 400
    reason = "invalid_action"
    default_message = "Unsupported action for this code"


class WaitingForReplacement(HandoffError):
    status_code_default = 409
    reason = "waiting_for_replacement"
    default_message = "The replacement user has not yet claimed the access code"


class TransferConflict(HandoffError):
    status_code_default = 409
    reason = "conflict"
    default_message = "This code was consumed by a different account"


class ExternalServiceFailure(HandoffError):
    status_code_default = 502
    reason = "external_service_failure"
    default_message = "An external service is unavailable"


class PartialTransferFailure(HandoffError):
    status_code_default = 500
    reason = "partial_transfer_failure"
    default_message = "Ownership transfer stopped part-way; retry to resume"

    def __init__(self, *, completed_steps: list[str], failed_step: str, cause: Optional[str] = None) -> None:
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
        super().__init__(None, completed_steps=self.completed_steps, failed_step=failed_step, cause=cause)


REJECTIONS_BY_REASON: dict[str, type[ValidationRejected]] = {
    cls.reason: cls for cls in (CodeNotFound, CodeAlreadyUsed, CodeExpired, EmailMismatch, TooManyAttempts)
}
