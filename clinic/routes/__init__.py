"""APIRouter registration for the progress service."""

from __future__ import annotations

from fastapi import APIRouter

from clinic.routes.health import router as health_router
from clinic.routes.progress import router as progress_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(progress_router, tags=["Autosave"])

__all__ = ["api_router"]
