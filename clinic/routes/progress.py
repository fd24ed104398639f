"""Incomplete-survey progress routes.

Backs the autosave tracker: create on the first answer, replace-and-merge on
every later answer, delete on submission. Admin endpoints list and summarise
sessions that were never finished.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from clinic.http.error_mapping import problem
from clinic.logic import repository_progress as repo
from clinic.logic.events import PROGRESS_DELETED, PROGRESS_SAVED, publish
from clinic.models.progress import ProgressCreate, ProgressStats, ProgressUpdate, ProgressView

router = APIRouter(prefix="/surveys/incomplete")
logger = logging.getLogger(__name__)


def _abandon_after_hours(request: Request) -> float:
    config = getattr(request.app.state, "config", None)
    return config.progress.abandon_after_hours if config is not None else 24.0


def _not_found(session_id: str) -> HTTPException:
    logger.info("progress.not_found", extra={"session_id": session_id})
    return HTTPException(status_code=404, detail=problem("progress_not_found"))


@router.get("/admin/list", response_model=list[ProgressView], summary="List incomplete surveys")
def list_incomplete(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    abandoned_only: bool = False,
):
    return repo.list_progress(
        skip=skip,
        limit=limit,
        abandoned_only=abandoned_only,
        abandon_after_hours=_abandon_after_hours(request),
    )


@router.get("/admin/stats", response_model=ProgressStats, summary="Incomplete survey statistics")
def incomplete_stats(request: Request):
    return repo.progress_stats(abandon_after_hours=_abandon_after_hours(request))


@router.post("/start-guest", summary="Start tracking a guest survey attempt")
def start_guest(payload: ProgressCreate):
    view = repo.create_progress(payload)
    publish(PROGRESS_SAVED, {"session_id": view["session_id"], "current_step": view["current_step"]})
    return JSONResponse(ProgressView(**view).model_dump(), status_code=201)


@router.get("/{session_id}", response_model=ProgressView, summary="Get survey progress")
def get_incomplete(session_id: str, request: Request):
    view = repo.get_progress(session_id, abandon_after_hours=_abandon_after_hours(request))
    if view is None:
        raise _not_found(session_id)
    return view


@router.patch("/{session_id}", response_model=ProgressView, summary="Save survey progress")
def update_incomplete(session_id: str, payload: ProgressUpdate):
    view = repo.update_progress(session_id, payload)
    if view is None:
        raise _not_found(session_id)
    publish(PROGRESS_SAVED, {"session_id": session_id, "current_step": view["current_step"]})
    return view


@router.delete("/{session_id}", summary="Remove progress after submission")
def delete_incomplete(session_id: str):
    if not repo.delete_progress(session_id):
        raise _not_found(session_id)
    publish(PROGRESS_DELETED, {"session_id": session_id})
    return {"message": "Survey progress removed"}


__all__ = ["router"]
