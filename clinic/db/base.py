"""SQLAlchemy engine for the progress service.

PostgreSQL is the production target; SQLite serves local development and the
test suite. Tables come from the SQL files in ``clinic/db/migrations``; no ORM
models are declared.
"""

from __future__ import annotations

import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DSN = "sqlite+pysqlite:///:memory:"

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None


def _db_url() -> str:
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or DEFAULT_DSN


def get_engine(url: str | None = None) -> Engine:
    """Return the process-wide Engine for *url* (or the configured URL).

    In-memory SQLite uses a StaticPool so every session sees the same
    database.
    """
    global _ENGINE, _ENGINE_URL
    resolved_url = url or _ENGINE_URL or _db_url()

    if _ENGINE is None or _ENGINE_URL != resolved_url:
        kwargs: dict = {"future": True, "pool_pre_ping": True}
        if resolved_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in resolved_url:
                kwargs["poolclass"] = StaticPool
        if _ENGINE is not None:
            _ENGINE.dispose()
        _ENGINE = create_engine(resolved_url, **kwargs)
        _ENGINE_URL = resolved_url
        logger.info("db.engine.created dialect=%s", _ENGINE.dialect.name)

    return _ENGINE


def reset_engine() -> None:
    """Dispose the cached Engine; the next get_engine() starts fresh."""
    global _ENGINE, _ENGINE_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _ENGINE_URL = None


__all__ = ["DEFAULT_DSN", "get_engine", "reset_engine"]
