"""Wiring for a survey attempt: tracker construction and final submission."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from clinic.config import AppConfig, load_config
from clinic.logic.api_client import ClinicApiClient
from clinic.logic.autosave import ErrorReporter, ProgressAutosaveTracker
from clinic.logic.reconcile import reconcile_all
from clinic.logic.retry_executor import RetryingCallExecutor
from clinic.logic.session_identity import (
    FileSessionIdentityStore,
    InMemorySessionIdentityStore,
    SessionIdentityStore,
)
from clinic.models.scores import ScoreReport, SubmissionResult

logger = logging.getLogger(__name__)


def build_session_store(config: AppConfig) -> SessionIdentityStore:
    if config.autosave.context_dir:
        return FileSessionIdentityStore(config.autosave.context_dir)
    return InMemorySessionIdentityStore()


def build_autosave_tracker(
    config: Optional[AppConfig] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[SessionIdentityStore] = None,
    error_reporter: Optional[ErrorReporter] = None,
) -> ProgressAutosaveTracker:
    """Assemble a tracker from configuration.

    The caller owns ``http_client`` when passing one; otherwise close the
    client through ``tracker.api.aclose()``.
    """
    cfg = config or load_config()
    api = ClinicApiClient.from_config(cfg.api, http_client=http_client)
    return ProgressAutosaveTracker(
        api,
        store or build_session_store(cfg),
        executor=RetryingCallExecutor.from_config(cfg.retry),
        error_reporter=error_reporter,
    )


def build_score_report(result: SubmissionResult, names: Optional[Mapping[str, str]] = None) -> ScoreReport:
    return ScoreReport(
        total_score=result.total_score,
        pillars=reconcile_all(result.pillar_scores, names),
        advice=list(result.advice),
        survey_response_id=result.survey_response_id,
    )


async def submit_and_complete(
    api: ClinicApiClient,
    tracker: ProgressAutosaveTracker,
    responses: Mapping[str, int],
    profile: Optional[Mapping[str, Any]] = None,
    *,
    executor: Optional[RetryingCallExecutor] = None,
    names: Optional[Mapping[str, str]] = None,
) -> ScoreReport:
    """Submit the finished survey, close its autosave session, reconcile scores.

    Submission goes through the retrying executor and its terminal error
    propagates. Closing the autosave session is best-effort.
    """
    runner = executor or tracker.executor
    result = await runner.handle_call(lambda: api.submit_survey(responses, profile), reraise=True)
    await tracker.complete()
    report = build_score_report(result, names)
    logger.info(
        "survey.submitted",
        extra={"survey_response_id": report.survey_response_id, "pillars": len(report.pillars)},
    )
    return report


__all__ = [
    "build_session_store",
    "build_autosave_tracker",
    "build_score_report",
    "submit_and_complete",
]
