"""Pydantic models for scoring results returned by the scoring backend."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PillarScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pillar: str = Field(validation_alias=AliasChoices("pillar", "factor", "name"))
    score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("score", "raw_score", "rawScore")
    )
    max_score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("max_score", "maxScore")
    )
    percentage: Optional[float] = None
    interpretation: Optional[str] = None


class SubmissionResult(BaseModel):
    """Outcome of ``submit_survey``.

    ``pillar_scores`` stays as raw dicts so malformed entries can be filtered
    by the reconciler instead of failing the whole payload.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("total_score", "totalScore", "overall_score")
    )
    pillar_scores: List[Any] = Field(
        default_factory=list, validation_alias=AliasChoices("pillar_scores", "pillarScores")
    )
    advice: List[Any] = Field(
        default_factory=list, validation_alias=AliasChoices("advice", "recommendations")
    )
    survey_response_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("survey_response_id", "surveyResponseId")
    )


class ScoreReport(BaseModel):
    """Reconciled results ready for display."""

    total_score: Optional[float] = None
    pillars: List[dict] = Field(default_factory=list)
    advice: List[Any] = Field(default_factory=list)
    survey_response_id: Optional[int] = None


__all__ = ["PillarScore", "SubmissionResult", "ScoreReport"]
