"""Incomplete-survey progress data access.

Encapsulates the SQL for the ``incomplete_survey`` table so route handlers
stay free of inline queries. Responses are stored as a JSON document; updates
merge answers key by key inside one transaction.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine, RowMapping

from clinic.db.base import get_engine
from clinic.models.progress import ProgressCreate, ProgressUpdate

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, session_id, current_step, total_steps, responses, email, "
    "phone_number, company_url, started_at, last_activity"
)


def format_timestamp(dt: datetime | None = None) -> str:
    """Format an RFC3339 UTC timestamp with trailing 'Z'."""
    base = (dt or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat(timespec="seconds")
    return base.replace("+00:00", "Z")


def abandon_cutoff(abandon_after_hours: float, now: datetime | None = None) -> str:
    return format_timestamp((now or datetime.now(timezone.utc)) - timedelta(hours=abandon_after_hours))


def _to_view(row: RowMapping, cutoff: Optional[str] = None) -> dict:
    try:
        responses = json.loads(row["responses"] or "{}")
    except (TypeError, ValueError):
        logger.error("progress.responses_corrupt session_id=%s", row["session_id"])
        responses = {}
    view = {
        "id": int(row["id"]),
        "session_id": row["session_id"],
        "current_step": int(row["current_step"]),
        "total_steps": int(row["total_steps"]),
        "responses": responses if isinstance(responses, dict) else {},
        "email": row["email"],
        "phone_number": row["phone_number"],
        "company_url": row["company_url"],
        "started_at": row["started_at"],
        "last_activity": row["last_activity"],
        "is_abandoned": bool(cutoff and row["last_activity"] < cutoff),
    }
    return view


def _fetch(conn, session_id: str) -> Optional[RowMapping]:
    return conn.execute(
        sql_text(f"SELECT {_COLUMNS} FROM incomplete_survey WHERE session_id = :sid"),
        {"sid": session_id},
    ).mappings().first()


def create_progress(payload: ProgressCreate, *, engine: Engine | None = None) -> dict:
    """Insert a new progress row under a fresh session id and return it."""
    eng = engine or get_engine()
    session_id = str(uuid.uuid4())
    now = format_timestamp()
    with eng.begin() as conn:
        conn.execute(
            sql_text(
                """
                INSERT INTO incomplete_survey
                    (session_id, current_step, total_steps, responses, email,
                     phone_number, company_url, started_at, last_activity)
                VALUES
                    (:sid, :step, :total, :responses, :email,
                     :phone, :company, :now, :now)
                """
            ),
            {
                "sid": session_id,
                "step": payload.current_step,
                "total": payload.total_steps,
                "responses": json.dumps(payload.responses),
                "email": payload.email,
                "phone": payload.phone_number,
                "company": payload.company_url,
                "now": now,
            },
        )
        row = _fetch(conn, session_id)
    return _to_view(row)


def get_progress(session_id: str, *, abandon_after_hours: float | None = None, engine: Engine | None = None) -> Optional[dict]:
    eng = engine or get_engine()
    with eng.connect() as conn:
        row = _fetch(conn, session_id)
    if row is None:
        return None
    cutoff = abandon_cutoff(abandon_after_hours) if abandon_after_hours else None
    return _to_view(row, cutoff)


def update_progress(session_id: str, update: ProgressUpdate, *, engine: Engine | None = None) -> Optional[dict]:
    """Apply *update* to an existing row; None when the session is unknown.

    Provided scalar fields replace stored values, ``responses`` are merged and
    ``last_activity`` is always refreshed.
    """
    eng = engine or get_engine()
    with eng.begin() as conn:
        row = _fetch(conn, session_id)
        if row is None:
            return None
        current = _to_view(row)
        fields = update.model_dump(exclude_none=True)
        merged_responses = {**current["responses"], **fields.pop("responses", {})}
        values: dict[str, Any] = {
            "current_step": fields.get("current_step", current["current_step"]),
            "total_steps": fields.get("total_steps", current["total_steps"]),
            "email": fields.get("email", current["email"]),
            "phone_number": fields.get("phone_number", current["phone_number"]),
            "company_url": fields.get("company_url", current["company_url"]),
        }
        conn.execute(
            sql_text(
                """
                UPDATE incomplete_survey
                SET current_step = :current_step,
                    total_steps = :total_steps,
                    responses = :responses,
                    email = :email,
                    phone_number = :phone_number,
                    company_url = :company_url,
                    last_activity = :now
                WHERE session_id = :sid
                """
            ),
            {**values, "responses": json.dumps(merged_responses), "now": format_timestamp(), "sid": session_id},
        )
        row = _fetch(conn, session_id)
    return _to_view(row)


def delete_progress(session_id: str, *, engine: Engine | None = None) -> bool:
    eng = engine or get_engine()
    with eng.begin() as conn:
        result = conn.execute(
            sql_text("DELETE FROM incomplete_survey WHERE session_id = :sid"),
            {"sid": session_id},
        )
    return bool(result.rowcount)


def list_progress(
    *,
    skip: int = 0,
    limit: int = 50,
    abandoned_only: bool = False,
    abandon_after_hours: float = 24.0,
    now: datetime | None = None,
    engine: Engine | None = None,
) -> list[dict]:
    """Return progress rows, most recently active first."""
    eng = engine or get_engine()
    cutoff = abandon_cutoff(abandon_after_hours, now)
    where = "WHERE last_activity < :cutoff" if abandoned_only else ""
    with eng.connect() as conn:
        rows = conn.execute(
            sql_text(
                f"SELECT {_COLUMNS} FROM incomplete_survey {where} "
                "ORDER BY last_activity DESC, id DESC LIMIT :limit OFFSET :skip"
            ),
            {"cutoff": cutoff, "limit": limit, "skip": skip},
        ).mappings().all()
    return [_to_view(r, cutoff) for r in rows]


def progress_stats(
    *,
    abandon_after_hours: float = 24.0,
    now: datetime | None = None,
    engine: Engine | None = None,
) -> dict:
    eng = engine or get_engine()
    cutoff = abandon_cutoff(abandon_after_hours, now)
    with eng.connect() as conn:
        totals = conn.execute(
            sql_text(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN last_activity < :cutoff THEN 1 ELSE 0 END) AS abandoned,
                       AVG(current_step * 100.0 / total_steps) AS completion
                FROM incomplete_survey
                """
            ),
            {"cutoff": cutoff},
        ).mappings().first()
        exit_row = conn.execute(
            sql_text(
                """
                SELECT current_step, COUNT(*) AS n
                FROM incomplete_survey
                GROUP BY current_step
                ORDER BY n DESC, current_step ASC
                LIMIT 1
                """
            )
        ).mappings().first()
    return {
        "total_incomplete": int(totals["total"] or 0),
        "abandoned_count": int(totals["abandoned"] or 0),
        "average_completion_rate": round(float(totals["completion"] or 0.0), 2),
        "most_common_exit_step": int(exit_row["current_step"]) if exit_row else None,
    }


__all__ = [
    "format_timestamp",
    "abandon_cutoff",
    "create_progress",
    "get_progress",
    "update_progress",
    "delete_progress",
    "list_progress",
    "progress_stats",
]
