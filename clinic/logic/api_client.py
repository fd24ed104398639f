"""Async HTTP client for the Financial Clinic backend.

Owns the wire details (paths, JSON bodies, bearer token) and turns every
failure into one of the typed errors in ``clinic.logic.errors``. It performs a
single attempt per call; retrying is the executor's job.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from clinic.logic.errors import (
    ApiError,
    AuthError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)
from clinic.models.progress import ProgressState
from clinic.models.scores import SubmissionResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api/v1"
PROGRESS_PATH = "/surveys/incomplete"


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or None
    if isinstance(body, dict):
        for key in ("detail", "message", "title"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def classify_response(response: httpx.Response) -> ApiError:
    """Map a non-2xx response to a typed error."""
    status = response.status_code
    detail = _error_detail(response)
    if status == 408:
        return RequestTimeoutError(detail, status=status)
    if status == 429:
        return RateLimitError(detail, status=status)
    if status >= 500:
        return ServerError(detail, status=status)
    if status == 401:
        return AuthError(detail, status=status)
    if status == 403:
        return PermissionDeniedError(detail, status=status)
    if status == 404:
        return NotFoundError(detail, status=status)
    return ApiError(detail or f"HTTP {status}", status=status, code=ErrorCode.UNKNOWN_ERROR)


def classify_transport_error(exc: httpx.HTTPError) -> ApiError:
    """Map an httpx transport failure (no response received) to a typed error."""
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError()
    if isinstance(exc, httpx.TransportError):
        return NetworkError(f"Network connection failed: {exc}")
    return ApiError(str(exc) or None, code=ErrorCode.UNKNOWN_ERROR)


class ClinicApiClient:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Pass ``http_client`` to reuse a configured client (tests inject one with
    ``httpx.MockTransport`` or ``httpx.ASGITransport``); otherwise one is
    created from ``base_url``/``timeout`` and closed by :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 30.0,
        auth_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._auth_token = auth_token

    @classmethod
    def from_config(cls, api_config, **kwargs: Any) -> "ClinicApiClient":
        """Build a client from a ``clinic.config.ApiConfig``."""
        return cls(
            api_config.base_url,
            timeout=api_config.timeout_seconds,
            auth_token=api_config.auth_token,
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ClinicApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        """Send one request and return the decoded JSON body (``None`` if empty)."""
        # Trailing slashes are stripped except for the root path
        path = path if path == "/" else path.rstrip("/")
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            error = classify_transport_error(exc)
            logger.warning(
                "api.request.transport_failed",
                extra={"method": method, "path": path, "code": error.code.value},
            )
            raise error from exc
        if response.is_error:
            error = classify_response(response)
            logger.warning(
                "api.request.failed",
                extra={"method": method, "path": path, "status": response.status_code, "code": error.code.value},
            )
            raise error
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError("Malformed JSON in response body", status=response.status_code) from exc

    async def create_progress(self, state: ProgressState) -> str:
        body = await self.request("POST", f"{PROGRESS_PATH}/start-guest", json=state.to_payload())
        session_id = (body or {}).get("session_id") if isinstance(body, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise ServerError("Progress service did not return a session_id")
        return session_id

    async def update_progress(self, session_id: str, state: ProgressState) -> Any:
        return await self.request("PATCH", f"{PROGRESS_PATH}/{session_id}", json=state.to_payload())

    async def delete_progress(self, session_id: str) -> None:
        await self.request("DELETE", f"{PROGRESS_PATH}/{session_id}")

    async def get_progress(self, session_id: str) -> Any:
        return await self.request("GET", f"{PROGRESS_PATH}/{session_id}")

    async def submit_survey(
        self,
        responses: Mapping[str, int],
        profile: Optional[Mapping[str, Any]] = None,
        *,
        completion_time: Optional[int] = None,
    ) -> SubmissionResult:
        payload: dict = {"responses": dict(responses)}
        if profile is not None:
            payload["profile"] = dict(profile)
        if completion_time is not None:
            payload["completion_time"] = completion_time
        body = await self.request("POST", "/surveys/submit-guest", json=payload)
        return SubmissionResult.model_validate(body or {})

    async def health_check(self) -> Any:
        return await self.request("GET", "/health")


__all__ = [
    "DEFAULT_BASE_URL",
    "PROGRESS_PATH",
    "classify_response",
    "classify_transport_error",
    "ClinicApiClient",
]
