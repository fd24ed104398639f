"""Functional tests for the autosave tracker against an in-memory backend.

Covers idempotent start, best-effort update and complete, write ordering
under concurrent updates, and the expired-session policy.
"""

from __future__ import annotations

from typing import Any, List

import anyio
import pytest

from clinic.logic.autosave import ProgressAutosaveTracker
from clinic.logic.errors import NotFoundError, ServerError, ValidationError
from clinic.logic.events import AUTOSAVE_FAILED, get_buffered_events, subscribe
from clinic.logic.retry_executor import RetryingCallExecutor
from clinic.logic.session_identity import FileSessionIdentityStore, InMemorySessionIdentityStore


async def _no_sleep(seconds: float) -> None:
    return None


class ReporterSpy:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def __call__(self, operation: str, error: BaseException, context: dict) -> None:
        self.calls.append((operation, error, context))


def _tracker(api, store=None, reporter=None) -> ProgressAutosaveTracker:
    return ProgressAutosaveTracker(
        api,
        store or InMemorySessionIdentityStore(),
        executor=RetryingCallExecutor(3, sleep=_no_sleep),
        error_reporter=reporter,
    )


def test_start_twice_issues_one_create_call(fake_api, initial_state):
    tracker = _tracker(fake_api)

    async def main():
        first = await tracker.start(initial_state)
        second = await tracker.start(initial_state)
        return first, second

    first, second = anyio.run(main)

    assert first == second == "session-1"
    assert len(fake_api.create_calls) == 1
    assert tracker.get_current_session_id() == "session-1"


def test_concurrent_starts_share_one_session(fake_api, initial_state):
    tracker = _tracker(fake_api)
    ids: List[str] = []

    async def start_and_record():
        ids.append(await tracker.start(initial_state))

    async def main():
        async with anyio.create_task_group() as tg:
            for _ in range(3):
                tg.start_soon(start_and_record)

    anyio.run(main)

    assert ids == ["session-1"] * 3
    assert len(fake_api.create_calls) == 1


def test_complete_clears_session_and_next_start_creates_again(fake_api, initial_state):
    tracker = _tracker(fake_api)

    async def main():
        await tracker.start(initial_state)
        await tracker.complete()
        cleared = tracker.get_current_session_id()
        new_id = await tracker.start(initial_state)
        return cleared, new_id

    cleared, new_id = anyio.run(main)

    assert cleared is None
    assert new_id == "session-2"
    assert fake_api.delete_calls == ["session-1"]
    assert len(fake_api.create_calls) == 2


def test_start_reuses_id_from_persisted_context(fake_api, initial_state, tmp_path):
    first = _tracker(fake_api, FileSessionIdentityStore(tmp_path))
    anyio.run(first.start, initial_state)

    resumed = _tracker(fake_api, FileSessionIdentityStore(tmp_path))
    session_id = anyio.run(resumed.start, initial_state)

    assert session_id == "session-1"
    assert len(fake_api.create_calls) == 1
    assert resumed.snapshot.session_id == "session-1"


def test_start_retries_transient_failures(fake_api, initial_state):
    fake_api.create_failures = [ServerError(status=503), ServerError(status=502)]
    tracker = _tracker(fake_api)

    assert anyio.run(tracker.start, initial_state) == "session-1"
    assert len(fake_api.create_calls) == 3


def test_start_propagates_terminal_failure_after_retries(fake_api, initial_state):
    fake_api.create_failures = [ServerError(status=500)] * 4
    tracker = _tracker(fake_api)

    with pytest.raises(ServerError):
        anyio.run(tracker.start, initial_state)
    assert len(fake_api.create_calls) == 4
    assert tracker.get_current_session_id() is None


def test_start_rejects_invalid_state_before_network(fake_api):
    tracker = _tracker(fake_api)

    with pytest.raises(ValidationError):
        anyio.run(tracker.start, {"current_step": 0, "total_steps": 0})
    with pytest.raises(ValidationError):
        anyio.run(tracker.start)
    assert fake_api.create_calls == []


def test_update_merges_partial_state_into_snapshot(fake_api, initial_state):
    tracker = _tracker(fake_api)

    async def main():
        await tracker.start(initial_state)
        assert await tracker.update({"current_step": 1, "responses": {"q1": 3}})
        assert await tracker.update({"current_step": 2, "responses": {"q2": 4}})

    anyio.run(main)

    assert fake_api.remote["session-1"] == {
        "current_step": 2,
        "total_steps": 15,
        "responses": {"q1": 3, "q2": 4},
        "email": "guest@example.com",
    }
    snapshot = tracker.snapshot
    assert snapshot.session_id == "session-1"
    assert snapshot.responses == {"q1": 3, "q2": 4}
    assert tracker.last_activity is not None


def test_update_without_session_is_a_noop(fake_api):
    tracker = _tracker(fake_api)
    assert anyio.run(tracker.update, {"current_step": 1}) is False
    assert fake_api.update_calls == []


def test_update_failure_is_reported_not_raised_or_retried(fake_api, initial_state):
    fake_api.update_failures = [ServerError(status=500)]
    tracker = _tracker(fake_api)

    async def main():
        await tracker.start(initial_state)
        return await tracker.update({"current_step": 1, "responses": {"q1": 2}})

    assert anyio.run(main) is False
    assert len(fake_api.update_calls) == 1
    failures = [e for e in get_buffered_events() if e["type"] == AUTOSAVE_FAILED]
    assert failures[0]["payload"]["operation"] == "update"
    assert failures[0]["payload"]["error"] == "ServerError"
    assert failures[0]["payload"]["session_id"] == "session-1"
    assert tracker.get_current_session_id() == "session-1"


def test_invalid_answer_is_reported_and_not_sent(fake_api, initial_state):
    reporter = ReporterSpy()
    tracker = _tracker(fake_api, reporter=reporter)

    async def main():
        await tracker.start(initial_state)
        return await tracker.update({"responses": {"q1": 9}})

    assert anyio.run(main) is False
    assert fake_api.update_calls == []
    operation, error, _ = reporter.calls[0]
    assert operation == "update"
    assert isinstance(error, ValidationError)
    assert tracker.snapshot.responses == {}


def test_expired_session_clears_local_id_and_restart_reuses_snapshot(fake_api, initial_state):
    fake_api.update_failures = [NotFoundError(status=404)]
    reporter = ReporterSpy()
    tracker = _tracker(fake_api, reporter=reporter)

    async def main():
        await tracker.start(initial_state)
        saved = await tracker.update({"current_step": 3, "responses": {"q1": 5, "q2": 1, "q3": 2}})
        after_failure = tracker.get_current_session_id()
        new_id = await tracker.start()
        return saved, after_failure, new_id

    saved, after_failure, new_id = anyio.run(main)

    assert saved is False
    assert after_failure is None
    assert isinstance(reporter.calls[0][1], NotFoundError)
    assert new_id == "session-2"
    assert fake_api.remote["session-2"]["responses"] == {"q1": 5, "q2": 1, "q3": 2}
    assert fake_api.remote["session-2"]["current_step"] == 3


def test_concurrent_updates_never_regress_remote_state(fake_api, initial_state):
    # The first push is slow; the three behind it queue up and only the newest is sent
    fake_api.update_delays = {0: 0.05}
    tracker = _tracker(fake_api)
    results: List[Any] = []

    async def answer(step: int, value: int, delay: float):
        await anyio.sleep(delay)
        results.append(await tracker.update({"current_step": step, "responses": {f"q{step}": value}}))

    async def main():
        await tracker.start(initial_state)
        async with anyio.create_task_group() as tg:
            for i, value in enumerate([3, 4, 2, 5]):
                tg.start_soon(answer, i + 1, value, i * 0.005)

    anyio.run(main)

    assert results == [True, True, True, True]
    assert [s.current_step for _, s in fake_api.update_calls] == [1, 4]
    assert fake_api.remote["session-1"]["current_step"] == 4
    assert fake_api.remote["session-1"]["responses"] == {"q1": 3, "q2": 4, "q3": 2, "q4": 5}


def test_response_for_replaced_session_is_discarded(fake_api, initial_state):
    fake_api.update_delays = {0: 0.05}
    tracker = _tracker(fake_api)

    async def slow_update(out: list):
        out.append(await tracker.update({"current_step": 1, "responses": {"q1": 3}}))

    async def main():
        await tracker.start(initial_state)
        out: list = []
        async with anyio.create_task_group() as tg:
            tg.start_soon(slow_update, out)
            await anyio.sleep(0.01)
            tracker.clear_session()
        return out[0]

    assert anyio.run(main) is False
    assert tracker.last_activity is None


def test_update_queued_behind_complete_is_dropped(fake_api, initial_state):
    fake_api.update_delays = {0: 0.05}
    tracker = _tracker(fake_api)
    results: dict = {}

    async def update(name: str, step: int, delay: float):
        await anyio.sleep(delay)
        results[name] = await tracker.update({"current_step": step})

    async def complete(delay: float):
        await anyio.sleep(delay)
        await tracker.complete()

    async def main():
        await tracker.start(initial_state)
        async with anyio.create_task_group() as tg:
            tg.start_soon(update, "first", 1, 0)
            tg.start_soon(complete, 0.01)
            tg.start_soon(update, "second", 2, 0.02)

    anyio.run(main)

    assert results == {"first": True, "second": False}
    assert len(fake_api.update_calls) == 1
    assert fake_api.delete_calls == ["session-1"]
    assert "session-1" not in fake_api.remote


def test_complete_failure_is_reported_and_id_still_cleared(fake_api, initial_state):
    fake_api.delete_failures = [ServerError(status=500)]
    reporter = ReporterSpy()
    tracker = _tracker(fake_api, reporter=reporter)

    async def main():
        await tracker.start(initial_state)
        await tracker.complete()

    anyio.run(main)

    assert tracker.get_current_session_id() is None
    assert tracker.snapshot is None
    assert reporter.calls[0][0] == "complete"


def test_complete_without_session_does_nothing(fake_api):
    tracker = _tracker(fake_api)
    anyio.run(tracker.complete)
    assert fake_api.delete_calls == []


def test_failing_reporter_does_not_escape_update(fake_api, initial_state):
    fake_api.update_failures = [ServerError()]

    def reporter(operation, error, context):
        raise RuntimeError("reporter bug")

    tracker = _tracker(fake_api, reporter=reporter)

    async def main():
        await tracker.start(initial_state)
        return await tracker.update({"current_step": 1})

    assert anyio.run(main) is False


def test_autosave_failures_reach_event_subscribers(fake_api, initial_state):
    fake_api.update_failures = [ServerError(status=503)]
    received: List[tuple] = []
    unsubscribe = subscribe(lambda event_type, payload: received.append((event_type, payload)))
    tracker = _tracker(fake_api)

    async def main():
        await tracker.start(initial_state)
        await tracker.update({"current_step": 1})

    try:
        anyio.run(main)
    finally:
        unsubscribe()

    assert [t for t, _ in received] == [AUTOSAVE_FAILED]
    assert received[0][1]["step"] == 1


def test_clear_session_forgets_locally_only(fake_api, initial_state):
    tracker = _tracker(fake_api)
    anyio.run(tracker.start, initial_state)

    tracker.clear_session()

    assert tracker.get_current_session_id() is None
    assert tracker.snapshot is None
    assert fake_api.delete_calls == []
    assert "session-1" in fake_api.remote


def test_second_start_retries_after_first_start_exhausted_budget(fake_api, initial_state):
    fake_api.create_failures = [ServerError(status=503)] * 4
    tracker = _tracker(fake_api)

    with pytest.raises(ServerError):
        anyio.run(tracker.start, initial_state)
    assert tracker.executor.retry_count == 3

    fake_api.create_failures = [ServerError(status=503)]
    assert anyio.run(tracker.start, initial_state) == "session-1"
    assert len(fake_api.create_calls) == 6


def test_partial_update_after_reload_rebuilds_snapshot_from_service(fake_api, initial_state, tmp_path):
    before = _tracker(fake_api, FileSessionIdentityStore(tmp_path))

    async def first_visit():
        await before.start(initial_state)
        await before.update({"current_step": 2, "responses": {"q1": 3, "q2": 4}})

    anyio.run(first_visit)

    reloaded = _tracker(fake_api, FileSessionIdentityStore(tmp_path))
    saved = anyio.run(reloaded.update, {"current_step": 3, "responses": {"q3": 5}})

    assert saved is True
    assert fake_api.get_calls == ["session-1"]
    assert fake_api.remote["session-1"] == {
        "current_step": 3,
        "total_steps": 15,
        "responses": {"q1": 3, "q2": 4, "q3": 5},
        "email": "guest@example.com",
    }
    assert reloaded.snapshot.responses == {"q1": 3, "q2": 4, "q3": 5}


def test_reload_onto_expired_session_clears_id_and_reports(fake_api, tmp_path):
    store = FileSessionIdentityStore(tmp_path)
    store.set("session-gone")
    reporter = ReporterSpy()
    tracker = _tracker(fake_api, store, reporter=reporter)

    assert anyio.run(tracker.update, {"current_step": 1}) is False
    assert store.get() is None
    assert fake_api.update_calls == []
    operation, error, context = reporter.calls[0]
    assert operation == "restore"
    assert isinstance(error, NotFoundError)
    assert context == {"session_id": "session-gone"}
