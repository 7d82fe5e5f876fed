from __future__ import annotations

import json
import logging

from app.logging_config import JsonFormatter, KeyValueFormatter
from app.middleware.request_id import request_id_ctx
from app.middleware.structured_logging import _mask_path
from app.services.code_store import mask_code


def _record(**extra) -> logging.LogRecord:
    r = logging.LogRecord("handoff.code_store", logging.INFO, __file__, 1, "access code issued", None, None)
    for k, v in extra.items():
        setattr(r, k, v)
    return r


def test_json_line_carries_request_id_and_extras():
    token = request_id_ctx.set("rid-1")
    try:
        line = JsonFormatter().format(_record(code="AB******", residence_id=42, user_id=None, org="ignored"))
    finally:
        request_id_ctx.reset(token)

    payload = json.loads(line)
    assert payload["request_id"] == "rid-1"
    assert payload["logger"] == "handoff.code_store"
    assert payload["code"] == "AB******"
    assert payload["residence_id"] == 42
    assert "user_id" not in payload
    assert "org" not in payload


def test_text_format_appends_fields():
    line = KeyValueFormatter().format(_record(state="complete"))
    assert "handoff.code_store: access code issued" in line
    assert line.endswith("state=complete")


def test_request_paths_mask_access_codes():
    assert mask_code("abcd2345") == "AB******"
    assert _mask_path("/api/handoff/codes/abcd2345/validate") == "/api/handoff/codes/AB******/validate"
    assert _mask_path("/api/handoff/codes") == "/api/handoff/codes"
