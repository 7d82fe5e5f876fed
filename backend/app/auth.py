# backend/app/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: str  # resident | syndic
    residence_id: int | None = None


@dataclass(frozen=True)
class VerifiedIdentity:
    """
    Email the caller has proven control of. `user_id` is None before signup
    (the claimant may validate a code before the account exists).
    """

    email: str
    user_id: int | None = None


# -------------------------
# JWT helpers (PyJWT)
# -------------------------
def issue_token(*, user_id: Optional[int], email: str, ttl_minutes: int = 60) -> str:
    now = datetime.utcnow()
    payload: dict[str, Any] = {
        "email": (email or "").strip().lower(),
        "iat": now,
        "exp": now + timedelta(minutes=int(ttl_minutes)),
    }
    if user_id is not None:
        payload["sub"] = str(int(user_id))
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _jwt_verify(token: str) -> dict[str, Any]:
    try:
        return dict(jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _token_from_request(request: Request, authorization: Optional[str]) -> Optional[str]:
    token = request.cookies.get(settings.jwt_cookie_name) if settings.jwt_cookie_name else None
    if not token and authorization and str(authorization).lower().startswith("bearer "):
        token = str(authorization).split(" ", 1)[1].strip()
    return token or None


def _get_user_by_email(db: Session, email: str) -> AppUser | None:
    return db.scalar(select(AppUser).where(AppUser.email == email))


def _principal_from_user(user: AppUser) -> Principal:
    return Principal(
        user_id=int(user.id),
        email=str(user.email),
        role=str(user.role),
        residence_id=int(user.residence_id) if user.residence_id is not None else None,
    )


def _dev_email(request: Request) -> str:
    return (request.headers.get(settings.dev_header_user_email) or "").strip().lower()


# -------------------------
# get_principal
# -------------------------
def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes supported (in priority order):
      1) JWT cookie (HttpOnly) OR Authorization: Bearer <token>
      2) dev header spoofing (ONLY if settings.auth_mode == "dev")
    """
    token = _token_from_request(request, authorization)
    if token:
        claims = _jwt_verify(token)
        sub = str(claims.get("sub") or "")
        if not sub:
            raise HTTPException(status_code=401, detail="Token missing sub")

        user = db.scalar(select(AppUser).where(AppUser.id == int(sub)))
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return _principal_from_user(user)

    if settings.auth_mode == "dev":
        email = _dev_email(request)
        if not email:
            raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")

        user = _get_user_by_email(db, email=email)
        if user is None and settings.dev_auto_provision:
            user = AppUser(email=email, display_name=email.split("@")[0], role="resident", created_at=datetime.utcnow())
            db.add(user)
            db.commit()
            db.refresh(user)

        if user is None:
            raise HTTPException(status_code=401, detail="Dev auth could not provision user")

        user.last_login_at = datetime.utcnow()
        db.add(user)
        db.commit()
        return _principal_from_user(user)

    raise HTTPException(status_code=401, detail="Not authenticated")


def get_verified_identity(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> VerifiedIdentity:
    """
    Like get_principal, but does not require an account: a token whose `email`
    claim is signed counts, so does the dev header. Never provisions users.
    """
    token = _token_from_request(request, authorization)
    if token:
        claims = _jwt_verify(token)
        email = str(claims.get("email") or "").strip().lower()
        sub = str(claims.get("sub") or "")
        if sub:
            user = db.scalar(select(AppUser).where(AppUser.id == int(sub)))
            if user is None:
                raise HTTPException(status_code=401, detail="Unknown user")
            return VerifiedIdentity(email=str(user.email), user_id=int(user.id))
        if not email:
            raise HTTPException(status_code=401, detail="Token missing email")
        return VerifiedIdentity(email=email, user_id=None)

    if settings.auth_mode == "dev":
        email = _dev_email(request)
        if not email:
            raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")
        user = _get_user_by_email(db, email=email)
        return VerifiedIdentity(email=email, user_id=int(user.id) if user else None)

    raise HTTPException(status_code=401, detail="Not authenticated")
