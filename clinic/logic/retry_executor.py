"""Bounded-retry executor for remote calls.

Wraps an async zero-argument callable and drives it through an explicit state
machine::

    IDLE --handle_call--> RUNNING
    RUNNING --success--> IDLE                       (retry_count reset to 0)
    RUNNING --retryable, budget left--> FAILED_RETRYABLE --backoff--> RUNNING
    RUNNING --terminal or budget spent--> FAILED_TERMINAL
    FAILED_TERMINAL --retry()--> RUNNING            (retry_count reset first)
    FAILED_* --clear_error()--> IDLE

Errors are classified upstream by the transport; the executor only reads the
``retryable`` flag. Backoff for attempt ``n`` (0-indexed) is
``min(base_delay_ms * 2**n, max_delay_ms)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import anyio

from clinic.logic.errors import user_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000


class ExecutorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


@dataclass
class CallAttempt:
    attempt_number: int
    error: Optional[BaseException] = None
    retryable: bool = False
    scheduled_delay_ms: int = 0


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    """Delay before re-invoking after failed attempt *attempt*; never negative."""
    attempt = max(0, int(attempt))
    cap = max(0, int(max_delay_ms))
    return max(0, min(int(base_delay_ms) * (2 ** attempt), cap))


def _is_retryable(error: BaseException) -> bool:
    return getattr(error, "retryable", False) is True


class RetryingCallExecutor:
    """Run remote calls with automatic retry and observable state.

    ``on_state_change`` is invoked with the executor after every state
    mutation, which is how a UI layer (or a test) observes ``is_loading``,
    ``error`` and ``retry_count`` transitions. ``sleep`` is injectable so
    tests can skip real waiting.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        on_state_change: Optional[Callable[["RetryingCallExecutor"], None]] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep or anyio.sleep
        self._on_state_change = on_state_change
        self._last_call: Optional[Callable[[], Awaitable[Any]]] = None

        self.state = ExecutorState.IDLE
        self.error: Optional[BaseException] = None
        self.is_loading = False
        self.retry_count = 0
        self.attempts: List[CallAttempt] = []

    @classmethod
    def from_config(cls, retry_config, **kwargs: Any) -> "RetryingCallExecutor":
        """Build an executor from a ``clinic.config.RetryConfig``."""
        return cls(
            retry_config.max_retries,
            base_delay_ms=retry_config.base_delay_ms,
            max_delay_ms=retry_config.max_delay_ms,
            **kwargs,
        )

    @property
    def can_retry(self) -> bool:
        """True when the UI should offer a manual "Retry" action."""
        return self.error is not None and _is_retryable(self.error)

    @property
    def error_message(self) -> str:
        return user_message(self.error)

    def _set(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self, name, value)
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(self)
        except Exception:
            logger.error("executor.state_listener_failed", exc_info=True)

    async def handle_call(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        reraise: bool = False,
    ) -> Any:
        """Invoke *fn*, retrying transient failures.

        Returns the call's result, or ``None`` on terminal failure with the
        error left in :attr:`error`. With ``reraise=True`` the terminal error
        is raised instead.

        Each call gets the full retry budget; ``retry_count`` counts retries
        of this call only.

        Raises:
            RuntimeError: if a call is already in flight on this executor.
        """
        if self.is_loading:
            raise RuntimeError("executor is busy with another call")
        self._last_call = fn
        self.attempts = []
        self._set(state=ExecutorState.RUNNING, is_loading=True, error=None, retry_count=0)
        try:
            while True:
                try:
                    result = await fn()
                except Exception as exc:
                    retryable = _is_retryable(exc)
                    if retryable and self.retry_count < self.max_retries:
                        delay_ms = backoff_delay_ms(self.retry_count, self.base_delay_ms, self.max_delay_ms)
                        self.attempts.append(CallAttempt(self.retry_count, exc, True, delay_ms))
                        logger.warning(
                            "executor.retry.scheduled",
                            extra={"attempt": self.retry_count, "delay_ms": delay_ms, "error": repr(exc)},
                        )
                        self._set(state=ExecutorState.FAILED_RETRYABLE, error=exc)
                        await self._sleep(delay_ms / 1000.0)
                        self._set(
                            state=ExecutorState.RUNNING,
                            error=None,
                            retry_count=self.retry_count + 1,
                        )
                        continue
                    self.attempts.append(CallAttempt(self.retry_count, exc, retryable, 0))
                    logger.error(
                        "executor.call.failed",
                        extra={"attempt": self.retry_count, "retryable": retryable, "error": repr(exc)},
                    )
                    self._set(state=ExecutorState.FAILED_TERMINAL, is_loading=False, error=exc)
                    if reraise:
                        raise
                    return None
                self.attempts.append(CallAttempt(self.retry_count))
                self._set(state=ExecutorState.IDLE, is_loading=False, error=None, retry_count=0)
                return result
        finally:
            # Cancelled mid-call or mid-backoff
            if self.is_loading:
                self._set(state=ExecutorState.IDLE, is_loading=False)

    async def retry(self, *, reraise: bool = False) -> Any:
        """Re-run the last operation from scratch; no-op when there is none."""
        if self._last_call is None:
            return None
        if self.is_loading:
            logger.warning("executor.retry.ignored_busy")
            return None
        return await self.handle_call(self._last_call, reraise=reraise)

    def clear_error(self) -> None:
        """Dismiss a failure without re-invoking anything."""
        if self.is_loading:
            return
        self._set(state=ExecutorState.IDLE, error=None, retry_count=0)


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_DELAY_MS",
    "DEFAULT_MAX_DELAY_MS",
    "ExecutorState",
    "CallAttempt",
    "backoff_delay_ms",
    "RetryingCallExecutor",
]
