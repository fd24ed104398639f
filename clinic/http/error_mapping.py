"""Central mapping of service error outcomes to problem+json payloads.

Single source of truth for the ``code``/``status``/``title`` triple each
failure produces. Route modules import ``problem()`` instead of hardcoding
strings or numbers.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PROBLEM_MAP: Dict[str, Dict[str, object]] = {
    "progress_not_found": {
        "title": "Not Found",
        "status": 404,
        "code": "PROGRESS_NOT_FOUND",
        "detail": "Survey progress session not found or expired",
    },
    "request_invalid": {
        "title": "Invalid Request",
        "status": 422,
        "code": "REQUEST_VALIDATION_FAILED",
        "detail": "Request validation failed",
    },
    "internal_error": {
        "title": "Internal Server Error",
        "status": 500,
        "code": "INTERNAL_ERROR",
        "detail": "An unexpected error occurred",
    },
}


def problem(key: str, detail: Optional[str] = None) -> Dict[str, object]:
    """Return a fresh problem dict for *key*, optionally overriding ``detail``."""
    body = dict(PROBLEM_MAP[key])
    if detail:
        body["detail"] = detail
    logger.info("error_handler.handle", extra={"code": body["code"]})
    return body


__all__ = ["PROBLEM_MAP", "problem"]
