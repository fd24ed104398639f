"""Best-effort autosave of in-progress survey state.

The tracker owns one snapshot of the survey (step, answers, contact hint) and
pushes the whole snapshot to the progress service whenever the caller reports
a change. Rules:

- ``start`` is idempotent: an id already held by the session store is reused
  and no create call is made.
- ``update`` and ``complete`` never raise. Failures go to the error reporter.
- Pushes are serialized. Every update takes a sequence number when it is
  submitted; a queued push that a newer snapshot has superseded is skipped, so
  an older snapshot never lands after a newer one.
- Every push is tagged with the session id it was issued for and dropped if
  that session is no longer active by the time it runs or returns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol, Union

import anyio
from pydantic import ValidationError as PydanticValidationError

from clinic.logic.errors import NotFoundError, ValidationError
from clinic.logic.events import AUTOSAVE_FAILED, publish
from clinic.logic.retry_executor import RetryingCallExecutor
from clinic.logic.session_identity import SessionIdentityStore
from clinic.models.progress import ProgressState, SurveyProgress

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[str, BaseException, dict], None]
StateInput = Union[ProgressState, Mapping[str, Any]]


class ProgressApi(Protocol):
    async def create_progress(self, state: ProgressState) -> str: ...

    async def update_progress(self, session_id: str, state: ProgressState) -> Any: ...

    async def delete_progress(self, session_id: str) -> None: ...

    async def get_progress(self, session_id: str) -> Any: ...


def publish_autosave_failure(operation: str, error: BaseException, context: dict) -> None:
    """Default reporter: emit an ``autosave.failed`` domain event."""
    publish(
        AUTOSAVE_FAILED,
        {
            "operation": operation,
            "error": type(error).__name__,
            "detail": str(error),
            **context,
        },
    )


def _coerce_state(state: StateInput) -> ProgressState:
    if isinstance(state, ProgressState):
        return state
    try:
        return ProgressState.model_validate(dict(state))
    except (PydanticValidationError, TypeError, ValueError) as e:
        raise ValidationError(f"invalid survey progress state: {e}") from e


class ProgressAutosaveTracker:
    def __init__(
        self,
        api: ProgressApi,
        store: SessionIdentityStore,
        *,
        executor: Optional[RetryingCallExecutor] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self._api = api
        self._store = store
        self._executor = executor or RetryingCallExecutor()
        self._report_error = error_reporter or publish_autosave_failure
        self._start_lock = anyio.Lock()
        self._write_lock = anyio.Lock()
        self._snapshot: Optional[ProgressState] = None
        self._submitted_seq = 0
        self.last_activity: Optional[datetime] = None

    @property
    def api(self) -> ProgressApi:
        return self._api

    @property
    def executor(self) -> RetryingCallExecutor:
        return self._executor

    @property
    def snapshot(self) -> Optional[SurveyProgress]:
        """Current state bound to the active session, if both exist."""
        session_id = self._store.get()
        if session_id is None or self._snapshot is None:
            return None
        data = self._snapshot.model_dump()
        if self.last_activity is not None:
            data["last_activity"] = self.last_activity
        return SurveyProgress(session_id=session_id, **data)

    def get_current_session_id(self) -> Optional[str]:
        return self._store.get()

    def _report(self, operation: str, error: BaseException, **context: Any) -> None:
        logger.warning(
            "autosave.%s.failed", operation, extra={"error": repr(error), **context}
        )
        try:
            self._report_error(operation, error, context)
        except Exception:
            logger.error("autosave.error_reporter_failed", exc_info=True)

    async def start(self, initial_state: Optional[StateInput] = None) -> str:
        """Return the active session id, creating a remote session if needed.

        Without *initial_state* the tracker's current snapshot is used, which
        lets a caller re-open a session that expired mid-survey.

        Raises:
            ValidationError: if no usable state is available.
            ApiError: if the create call fails after the executor's retries.
        """
        if initial_state is not None:
            state = _coerce_state(initial_state)
        elif self._snapshot is not None:
            state = self._snapshot
        else:
            raise ValidationError("start() needs an initial state")

        async with self._start_lock:
            existing = self._store.get()
            if existing:
                if self._snapshot is None:
                    self._snapshot = state
                logger.info("autosave.start.reused", extra={"session_id": existing})
                return existing

            session_id = await self._executor.handle_call(
                lambda: self._api.create_progress(state), reraise=True
            )
            self._store.set(session_id)
            self._snapshot = state
            self.last_activity = datetime.now(timezone.utc)
            logger.info("autosave.start.created", extra={"session_id": session_id})
            return session_id

    async def _restore_snapshot(self, session_id: str) -> Optional[ProgressState]:
        """Load the stored record for *session_id* as the tracker's snapshot.

        Failures are reported and yield None; an expired session also clears
        the stale local id.
        """
        async with self._start_lock:
            if self._snapshot is not None:
                return self._snapshot
            try:
                stored = await self._api.get_progress(session_id)
                state = ProgressState.from_payload(stored or {})
            except NotFoundError as e:
                if self._store.get() == session_id:
                    self._store.clear()
                self._report("restore", e, session_id=session_id)
                return None
            except (PydanticValidationError, AttributeError, TypeError, ValueError) as e:
                self._report("restore", ValidationError(f"stored progress is malformed: {e}"), session_id=session_id)
                return None
            except Exception as e:
                self._report("restore", e, session_id=session_id)
                return None
            self._snapshot = state
            logger.info(
                "autosave.snapshot.restored",
                extra={"session_id": session_id, "step": state.current_step, "answers": len(state.responses)},
            )
            return state

    async def update(self, partial_state: Mapping[str, Any]) -> bool:
        """Merge *partial_state* into the snapshot and push it.

        Returns True when the pushed snapshot (or a newer one that superseded
        it) is the one the service holds, False when nothing was saved.

        After a reload in the same context the store still holds the session
        id but the tracker has no snapshot yet. The snapshot is then rebuilt
        from the stored record before the partial is merged.
        """
        session_id = self._store.get()
        if not session_id:
            logger.warning("autosave.update.no_session")
            return False
        if self._snapshot is None and await self._restore_snapshot(session_id) is None:
            return False
        base = self._snapshot
        if base is None or self._store.get() != session_id:
            logger.info("autosave.update.stale_session", extra={"session_id": session_id})
            return False
        try:
            state = base.merged(partial_state)
        except (PydanticValidationError, ValidationError, AttributeError, TypeError, ValueError) as e:
            error = e if isinstance(e, ValidationError) else ValidationError(str(e))
            self._report("update", error, session_id=session_id)
            return False

        self._snapshot = state
        self._submitted_seq += 1
        seq = self._submitted_seq

        async with self._write_lock:
            if seq < self._submitted_seq:
                logger.debug("autosave.update.coalesced", extra={"session_id": session_id, "seq": seq})
                return True
            if self._store.get() != session_id:
                logger.info("autosave.update.stale_session", extra={"session_id": session_id})
                return False
            try:
                await self._api.update_progress(session_id, state)
            except NotFoundError as e:
                # Expired server-side; the next start() opens a fresh session
                if self._store.get() == session_id:
                    self._store.clear()
                self._report("update", e, session_id=session_id, step=state.current_step)
                return False
            except Exception as e:
                self._report("update", e, session_id=session_id, step=state.current_step)
                return False
            if self._store.get() != session_id:
                logger.info("autosave.update.response_discarded", extra={"session_id": session_id})
                return False
            self.last_activity = datetime.now(timezone.utc)
            logger.info(
                "autosave.update.saved",
                extra={"session_id": session_id, "step": state.current_step, "answers": len(state.responses)},
            )
            return True

    async def complete(self) -> None:
        """Delete the remote progress record and forget the session.

        Waits for any in-flight push first so the delete is the last write.
        The local id is cleared even when the delete fails.
        """
        session_id = self._store.get()
        if not session_id:
            return
        async with self._write_lock:
            try:
                await self._api.delete_progress(session_id)
                logger.info("autosave.complete.deleted", extra={"session_id": session_id})
            except Exception as e:
                self._report("complete", e, session_id=session_id)
            finally:
                if self._store.get() == session_id:
                    self._store.clear()
                self._snapshot = None
                self.last_activity = None

    def clear_session(self) -> None:
        """Forget the session locally without touching the service."""
        self._store.clear()
        self._snapshot = None
        self.last_activity = None


__all__ = [
    "ErrorReporter",
    "ProgressApi",
    "publish_autosave_failure",
    "ProgressAutosaveTracker",
]
