# backend/app/db.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import settings


class Base(DeclarativeBase):
    pass


def _connect_args(url: str) -> dict:
    # request threads share the pool; sqlite refuses cross-thread use by default
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def get_db():
    """
    IMPORTANT (Postgres):
    If any SQL statement fails, the transaction is aborted and the session
    cannot run further statements until a rollback happens.

    This dependency guarantees rollback on exceptions so errors don't cascade
    into "InFailedSqlTransaction" on later queries in the same request.

    Writes that must outlive a rejected request (attempt counters, remediation)
    are committed by the service before it raises.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        try:
            db.rollback()
        except Exception:
            pass
        raise
    finally:
        db.close()
