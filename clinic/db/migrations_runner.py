"""Lightweight SQL migrations runner.

Applies .sql files in lexical order from ``clinic/db/migrations/<dialect>/``.
Applied filenames are recorded in a ``schema_migrations`` table so a file is
never applied twice against the same database. Production deployments may
still prefer Alembic or the platform's migration mechanism.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).resolve().parent / "migrations"

_JOURNAL_DDL = (
    "CREATE TABLE IF NOT EXISTS schema_migrations ("
    "filename VARCHAR(255) PRIMARY KEY, applied_at VARCHAR(32) NOT NULL)"
)


def _iter_sql_files(root: Path) -> Iterable[Path]:
    for p in sorted(root.glob("*.sql")):
        if "rollback" in p.name.lower():
            continue
        yield p


def _iter_statements(sql: str) -> Iterable[str]:
    # Migration files keep one statement per ';' and no procedural bodies
    for stmt in sql.split(";"):
        lines = [ln for ln in stmt.splitlines() if not ln.strip().startswith("--")]
        s = "\n".join(lines).strip()
        if s and s.upper() not in {"BEGIN", "COMMIT", "END"}:
            yield s


def _applied(conn: Connection) -> set[str]:
    rows = conn.execute(sql_text("SELECT filename FROM schema_migrations")).fetchall()
    return {str(r[0]) for r in rows}


def migrations_dir_for(engine: Engine) -> Path:
    name = (engine.dialect.name or "").lower()
    return MIGRATIONS_ROOT / ("postgresql" if name.startswith("postgres") else "sqlite")


def apply_migrations(engine: Engine, migrations_dir: str | Path | None = None) -> list[str]:
    """Apply pending migrations; returns the filenames applied by this call."""
    root = Path(migrations_dir) if migrations_dir is not None else migrations_dir_for(engine)
    if not root.exists():
        logger.warning("migrations_dir_missing path=%s", root)
        return []

    newly_applied: list[str] = []
    with engine.begin() as conn:
        conn.exec_driver_sql(_JOURNAL_DDL)
        already = _applied(conn)
        for sql_path in _iter_sql_files(root):
            fname = sql_path.name
            if fname in already:
                continue
            for stmt in _iter_statements(sql_path.read_text(encoding="utf-8")):
                conn.exec_driver_sql(stmt)
            conn.execute(
                sql_text("INSERT INTO schema_migrations (filename, applied_at) VALUES (:f, :t)"),
                {
                    "f": fname,
                    # ISO-8601 UTC without fractional seconds
                    "t": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
                },
            )
            newly_applied.append(fname)
            logger.info("migration_applied file=%s", fname)
    return newly_applied


__all__ = ["MIGRATIONS_ROOT", "apply_migrations", "migrations_dir_for"]
