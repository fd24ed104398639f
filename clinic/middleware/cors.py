"""CORS configuration helpers.

The survey front end runs on a different origin than the progress service, so
browsers need CORS for the autosave calls and must be able to read the
request id header.
"""

from __future__ import annotations

import os
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

EXPOSE_HEADERS: list[str] = ["X-Request-Id"]


def _origins_from_env() -> list[str]:
    raw = os.getenv("CLINIC_CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def apply_cors(app: FastAPI, *, origins: Iterable[str] | None = None) -> None:
    allow_origins = list(origins or _origins_from_env())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        # Browsers reject credentialed requests against a wildcard origin
        allow_credentials="*" not in allow_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSE_HEADERS,
    )


__all__ = ["apply_cors", "EXPOSE_HEADERS"]
