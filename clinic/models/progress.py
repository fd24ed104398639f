"""Pydantic models for survey progress (client snapshot and wire bodies)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

LikertAnswer = Annotated[int, Field(ge=1, le=5)]


class ContactHint(BaseModel):
    """Contact details used later to link a guest session to an identity."""

    email: Optional[str] = None
    phone: Optional[str] = None


class ProgressState(BaseModel):
    """Full snapshot of an in-progress survey as the tracker pushes it."""

    model_config = ConfigDict(extra="ignore")

    current_step: int = Field(default=0, ge=0)
    total_steps: int = Field(gt=0)
    responses: Dict[str, LikertAnswer] = Field(default_factory=dict)
    contact_hint: Optional[ContactHint] = None
    company_context: Optional[str] = None

    def merged(self, partial: Mapping[str, Any]) -> "ProgressState":
        """Return a new snapshot with *partial* applied.

        ``responses`` are merged key by key; other provided fields replace the
        current value. ``None`` values are ignored. The result is validated.
        """
        data = self.model_dump()
        for key, value in partial.items():
            if value is None:
                continue
            if key == "responses":
                data["responses"] = {**data["responses"], **dict(value)}
            elif key == "contact_hint":
                hint = value.model_dump() if isinstance(value, ContactHint) else dict(value)
                data["contact_hint"] = {**(data.get("contact_hint") or {}), **hint}
            else:
                data[key] = value
        return ProgressState.model_validate(data)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProgressState":
        """Rebuild a snapshot from a stored progress record (wire shape)."""
        hint = {"email": payload.get("email"), "phone": payload.get("phone_number")}
        return cls.model_validate(
            {
                "current_step": payload.get("current_step", 0),
                "total_steps": payload.get("total_steps"),
                "responses": payload.get("responses") or {},
                "contact_hint": hint if any(v is not None for v in hint.values()) else None,
                "company_context": payload.get("company_url"),
            }
        )

    def to_payload(self) -> dict:
        """Serialize to the backend's snake_case wire shape."""
        hint = self.contact_hint or ContactHint()
        payload: dict = {
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "responses": dict(self.responses),
        }
        if hint.email is not None:
            payload["email"] = hint.email
        if hint.phone is not None:
            payload["phone_number"] = hint.phone
        if self.company_context is not None:
            payload["company_url"] = self.company_context
        return payload


class SurveyProgress(ProgressState):
    """A snapshot bound to its autosave session."""

    session_id: str = Field(min_length=1)
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressCreate(BaseModel):
    """Body of ``POST /surveys/incomplete/start-guest``."""

    current_step: int = Field(default=0, ge=0)
    total_steps: int = Field(gt=0)
    responses: Dict[str, LikertAnswer] = Field(default_factory=dict)
    email: Optional[str] = None
    phone_number: Optional[str] = None
    company_url: Optional[str] = None


class ProgressUpdate(BaseModel):
    """Body of ``PATCH /surveys/incomplete/{session_id}``; every field optional."""

    current_step: Optional[int] = Field(default=None, ge=0)
    total_steps: Optional[int] = Field(default=None, gt=0)
    responses: Optional[Dict[str, LikertAnswer]] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    company_url: Optional[str] = None


class ProgressView(BaseModel):
    id: int
    session_id: str
    current_step: int
    total_steps: int
    responses: Dict[str, int]
    email: Optional[str] = None
    phone_number: Optional[str] = None
    company_url: Optional[str] = None
    started_at: str
    last_activity: str
    is_abandoned: bool = False


class ProgressStats(BaseModel):
    total_incomplete: int
    abandoned_count: int
    average_completion_rate: float
    most_common_exit_step: Optional[int] = None


__all__ = [
    "LikertAnswer",
    "ContactHint",
    "ProgressState",
    "SurveyProgress",
    "ProgressCreate",
    "ProgressUpdate",
    "ProgressView",
    "ProgressStats",
]
