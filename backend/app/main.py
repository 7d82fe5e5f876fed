# backend/app/main.py
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.handoff import router as handoff_router
from .routers.health import router as health_router

API_PREFIX = "/api"


def _cors_origins() -> list[str]:
    val = settings.cors_allow_origins
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Syndic Handoff",
        version=settings.app_version,
    )

    # Request-ID first (observability baseline)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(handoff_router, prefix=API_PREFIX)
    return app


app = create_app()
