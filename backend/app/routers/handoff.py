# backend/app/routers/handoff.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, VerifiedIdentity, get_principal, get_verified_identity
from ..db import get_db
from ..domain.errors import REJECTIONS_BY_REASON, CodeNotFound
from ..schemas import (
    AccessCodeCreate,
    AccessCodeOut,
    CancelOut,
    ClaimOut,
    CodeStatusOut,
    PendingHandoffOut,
    TransferOut,
    ValidationOut,
)
from ..services.transfer_coordinator import TransferCoordinator, ValidationResult

router = APIRouter(prefix="/handoff", tags=["handoff"])


def get_coordinator(db: Session = Depends(get_db)) -> TransferCoordinator:
    return TransferCoordinator(db)


def _out(result: ValidationResult) -> ValidationOut:
    if not result.accepted:
        cls = REJECTIONS_BY_REASON.get(result.reason or "", CodeNotFound)
        if cls is CodeNotFound:
            raise CodeNotFound()
        raise cls(
            attempts_remaining=result.attempts_remaining,
            code_deleted=result.code_deleted,
            account_deleted=result.account_deleted,
        )
    return ValidationOut(**result.as_dict())


@router.post("/codes", response_model=AccessCodeOut)
def issue_code(
    payload: AccessCodeCreate,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.issue_code(
        owner_id=p.user_id,
        replacement_email=payload.replacement_email,
        residence_id=payload.residence_id,
        action_type=payload.action_type,
    )


@router.get("/codes", response_model=list[AccessCodeOut])
def list_codes(
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.list_issued_codes(owner_id=p.user_id)


@router.delete("/codes/{code}", response_model=CancelOut)
def cancel_code(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.cancel_code(code=code, requester_id=p.user_id)


@router.post("/codes/{code}/validate", response_model=ValidationOut)
def validate_code(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    ident: VerifiedIdentity = Depends(get_verified_identity),
):
    return _out(coordinator.validate_code(code=code, claimant_email=ident.email, claimant_user_id=ident.user_id))


@router.post("/codes/{code}/validate-replacement", response_model=ValidationOut)
def validate_replacement(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    ident: VerifiedIdentity = Depends(get_verified_identity),
):
    """Pre-signup check: the caller proves the email, an account is optional."""
    return _out(coordinator.validate_for_user(code=code, claimant_email=ident.email))


@router.post("/codes/{code}/claim", response_model=ClaimOut)
def claim_code(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    row = coordinator.claim_code(code=code, claimant_id=p.user_id, claimant_email=p.email)
    return ClaimOut(state=row.state, residence_id=int(row.residence_id), action_type=row.action_type)


@router.post("/codes/{code}/finalize", response_model=TransferOut)
def finalize_transfer(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.finalize_transfer(code=code, owner_id=p.user_id).as_dict()


@router.post("/codes/{code}/complete", response_model=TransferOut)
def complete_claim(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.complete_claim(code=code, claimant_id=p.user_id, claimant_email=p.email).as_dict()


@router.get("/codes/{code}/status", response_model=CodeStatusOut)
def code_status(
    code: str,
    coordinator: TransferCoordinator = Depends(get_coordinator),
    p: Principal = Depends(get_principal),
):
    return coordinator.check_code_status(code=code)


@router.get("/pending", response_model=PendingHandoffOut)
def pending_for_me(
    email: str | None = Query(default=None),
    coordinator: TransferCoordinator = Depends(get_coordinator),
    ident: VerifiedIdentity = Depends(get_verified_identity),
):
    # only ever for the caller's own verified email
    if email and email.strip().lower() != ident.email:
        return PendingHandoffOut(pending=False)
    found = coordinator.check_replacement_email(email=ident.email)
    if found is None:
        return PendingHandoffOut(pending=False)
    return PendingHandoffOut(pending=True, **found)
