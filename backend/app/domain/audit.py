# backend/app/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent
from ..services.code_store import mask_code

HANDOFF_PREFIX = "handoff."

# payload keys that may carry a raw access code
_CODE_KEYS = ("code",)


def _scrub(v: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if v is None:
        return None
    out = dict(v)
    for k in _CODE_KEYS:
        if isinstance(out.get(k), str):
            out[k] = mask_code(out[k])
    return out


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def record_handoff_event(
    db: Session,
    *,
    event: str,
    residence_id: Optional[int],
    actor_user_id: Optional[int],
    entity_type: str,
    entity_id: str,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Append one step of a handoff to the audit trail and commit it.

    `event` is the short name ("code_issued", "completed", ...); it is stored
    as "handoff.<event>". Raw access codes in either payload are masked, so
    the trail can be shown to any syndic of the residence.
    """
    row = AuditEvent(
        residence_id=int(residence_id) if residence_id is not None else None,
        actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
        action=f"{HANDOFF_PREFIX}{event}",
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(_scrub(before)),
        after_json=_dumps(_scrub(after)),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def handoff_trail(db: Session, *, residence_id: Optional[int] = None) -> list[AuditEvent]:
    q = select(AuditEvent).where(AuditEvent.action.startswith(HANDOFF_PREFIX))
    if residence_id is not None:
        q = q.where(AuditEvent.residence_id == int(residence_id))
    return list(db.scalars(q.order_by(AuditEvent.id)).all())
