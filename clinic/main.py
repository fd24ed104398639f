"""Application factory for the incomplete-survey progress service."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinic.config import AppConfig, load_config
from clinic.db.base import get_engine
from clinic.db.migrations_runner import apply_migrations
from clinic.http.problem import (
    handle_http_exception,
    handle_request_validation_error,
    handle_unexpected_error,
)
from clinic.http.request_id import RequestIdMiddleware
from clinic.logging_setup import configure_logging
from clinic.middleware.cors import apply_cors
from clinic.routes import api_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the FastAPI app.

    Migrations are applied synchronously here rather than in a lifespan hook
    so in-process transports that skip lifespan events still see the schema.
    Set ``AUTO_APPLY_MIGRATIONS=0`` to manage the schema externally.
    """
    configure_logging()
    cfg = config or load_config()

    engine = get_engine(cfg.database.dsn)
    if os.getenv("AUTO_APPLY_MIGRATIONS", "1").strip().lower() not in {"0", "false", "no"}:
        apply_migrations(engine)

    app = FastAPI(title="Financial Clinic Progress Service")
    app.state.config = cfg
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.add_middleware(RequestIdMiddleware)
    apply_cors(app)
    app.include_router(api_router, prefix=API_PREFIX)
    logger.info("app.created dialect=%s", engine.dialect.name)
    return app


__all__ = ["API_PREFIX", "create_app"]
