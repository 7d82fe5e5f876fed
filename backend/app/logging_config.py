# backend/app/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .middleware.request_id import get_request_id

# structured extras copied onto the JSON line when a log call sets them
EXTRA_KEYS = (
    "code",
    "user_id",
    "residence_id",
    "state",
    "category",
    "claimant_email",
    "subscription_id",
    "failed_attempts",
    "task_id",
    "rows",
)


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: getattr(record, k) for k in EXTRA_KEYS if getattr(record, k, None) is not None}


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, request_id, extras, exc_info."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        payload.update(_extras(record))

        return json.dumps(payload, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable variant for a local terminal (LOG_FORMAT=text)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extras(record)
        rid = get_request_id()
        if rid:
            fields = {"request_id": rid, **fields}
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging() -> None:
    level = (os.getenv("LOG_LEVEL") or "INFO").upper()
    fmt = (os.getenv("LOG_FORMAT") or "json").strip().lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers (important for uvicorn reload)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(KeyValueFormatter() if fmt == "text" else JsonFormatter())

    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("handoff").setLevel((os.getenv("HANDOFF_LOG_LEVEL") or level).upper())
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
