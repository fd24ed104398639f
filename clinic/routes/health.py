"""Liveness endpoint with a database check."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError

from clinic.db.base import get_engine

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", summary="Service health")
def health() -> dict:
    try:
        with get_engine().connect() as conn:
            conn.execute(sql_text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health DB check failed", exc_info=True)
        return {"status": "degraded", "db": False, "reason": str(e)}
    return {"status": "ok", "db": True}
