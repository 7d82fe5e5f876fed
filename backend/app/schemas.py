# backend/app/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.handoff_states import ACTION_CHANGE_ROLE, ACTION_TYPES


# -------------------- Access codes --------------------

class AccessCodeCreate(BaseModel):
    replacement_email: str = Field(min_length=3, max_length=320)
    residence_id: int
    action_type: str = ACTION_CHANGE_ROLE

    @field_validator("replacement_email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if "@" not in v:
            raise ValueError("replacement_email must be an email address")
        return v

    @field_validator("action_type")
    @classmethod
    def _action(cls, v: str) -> str:
        if v not in ACTION_TYPES:
            raise ValueError(f"action_type must be one of {sorted(ACTION_TYPES)}")
        return v


class AccessCodeOut(BaseModel):
    """Owner-facing view. The owner sees the full code; nobody else ever does."""

    id: int
    code: str
    replacement_email: str
    action_type: str
    residence_id: int
    state: str
    failed_attempts: int
    code_used: bool
    claimed_by_user_id: Optional[int] = None
    used_by_user_id: Optional[int] = None
    created_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ValidationOut(BaseModel):
    valid: bool
    reason: Optional[str] = None
    attempts_remaining: int
    code_deleted: bool = False
    account_deleted: bool = False
    action_type: Optional[str] = None
    residence_id: Optional[int] = None


class ClaimOut(BaseModel):
    ok: bool = True
    state: str
    residence_id: int
    action_type: str


class CodeStatusOut(BaseModel):
    exists: bool
    used: bool
    attempts_remaining: int
    expired: bool
    state: Optional[str] = None
    claimed: Optional[bool] = None
    action_type: Optional[str] = None


class PendingHandoffOut(BaseModel):
    pending: bool
    residence_id: Optional[int] = None
    action_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    attempts_remaining: Optional[int] = None


class CancelOut(BaseModel):
    ok: bool = True
    state: str


# -------------------- Transfer --------------------

class CancellationOut(BaseModel):
    owner_user_id: int
    cancelled: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    ok: bool


class TransferOut(BaseModel):
    ok: bool = True
    code: str
    state: str
    claimant_user_id: int
    original_user_id: int
    residence_id: int
    action_type: str
    already_used: bool = False
    transfer: Optional[dict[str, Any]] = None
    subscriptions: Optional[CancellationOut] = None
