"""Error taxonomy shared by the transport, executor and autosave tracker.

The transport layer (``clinic.logic.api_client``) classifies failures into the
types below and sets ``retryable``. Everything downstream trusts that flag and
never re-classifies.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    CORS_ERROR = "CORS_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ClinicError(Exception):
    """Base class for every error raised by this package."""


class ApiError(ClinicError):
    """A failed remote call, as classified by the transport.

    Attributes mirror the problem payload the backend returns: ``detail`` is
    human readable, ``status`` the HTTP status when one was received.
    """

    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_retryable: bool = False
    default_detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        status: Optional[int] = None,
        code: Optional[ErrorCode] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.status = status
        self.code = code or self.default_code
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "status": self.status,
            "code": self.code.value,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(detail={self.detail!r}, status={self.status!r}, "
            f"code={self.code.value!r}, retryable={self.retryable!r})"
        )


class NetworkError(ApiError):
    default_code = ErrorCode.NETWORK_ERROR
    default_retryable = True
    default_detail = "Network connection failed. Please check your internet connection."


class RequestTimeoutError(ApiError):
    default_code = ErrorCode.TIMEOUT_ERROR
    default_retryable = True
    default_detail = "Request timeout. The server took too long to respond."


class ServerError(ApiError):
    default_code = ErrorCode.SERVER_ERROR
    default_retryable = True
    default_detail = "Server error. Please try again in a few moments."


class RateLimitError(ApiError):
    default_code = ErrorCode.RATE_LIMIT_ERROR
    default_retryable = True
    default_detail = "Too many requests. Please wait a moment and try again."


class NotFoundError(ApiError):
    """Stale or expired progress session."""

    default_code = ErrorCode.NOT_FOUND_ERROR
    default_retryable = False
    default_detail = "Resource not found."


class AuthError(ApiError):
    default_code = ErrorCode.AUTH_ERROR
    default_retryable = False
    default_detail = "Authentication required. Please log in again."


class PermissionDeniedError(ApiError):
    default_code = ErrorCode.PERMISSION_ERROR
    default_retryable = False
    default_detail = "Access denied. You do not have permission for this action."


class ValidationError(ClinicError):
    """Malformed local state; raised before anything reaches the network."""

    retryable = False


_USER_MESSAGES = {
    ErrorCode.NETWORK_ERROR: "Unable to connect to the server. Please check your internet connection and try again.",
    ErrorCode.CORS_ERROR: "Service temporarily unavailable. Please try again in a few moments.",
    ErrorCode.TIMEOUT_ERROR: "The request is taking longer than expected. Please try again.",
    ErrorCode.RATE_LIMIT_ERROR: "Too many requests. Please wait a moment before trying again.",
    ErrorCode.SERVER_ERROR: "Server error occurred. Our team has been notified. Please try again later.",
    ErrorCode.AUTH_ERROR: "Your session has expired. Please log in again.",
    ErrorCode.PERMISSION_ERROR: "You do not have permission to perform this action.",
}


def user_message(error: Optional[BaseException]) -> str:
    """Return the text shown to a survey taker for *error* ('' when none)."""
    if error is None:
        return ""
    code = getattr(error, "code", None)
    if code in _USER_MESSAGES:
        return _USER_MESSAGES[code]
    return getattr(error, "detail", None) or "An unexpected error occurred. Please try again."


__all__ = [
    "ErrorCode",
    "ClinicError",
    "ApiError",
    "NetworkError",
    "RequestTimeoutError",
    "ServerError",
    "RateLimitError",
    "NotFoundError",
    "AuthError",
    "PermissionDeniedError",
    "ValidationError",
    "user_message",
]
