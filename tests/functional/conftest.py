"""Functional test bootstrap.

Each test that needs the progress service gets its own file-backed SQLite
database under pytest's tmp_path, so no state leaks between tests. Tracker
tests use ``FakeProgressApi``, an in-memory stand-in for the HTTP transport
that records every call and can inject failures and latency.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List

import anyio
import pytest

os.environ.setdefault("AUTO_APPLY_MIGRATIONS", "1")

from clinic.config import (  # noqa: E402
    ApiConfig,
    AppConfig,
    AutosaveConfig,
    DatabaseConfig,
    ProgressServiceConfig,
    RetryConfig,
)
from clinic.db.base import reset_engine  # noqa: E402
from clinic.logic.errors import NotFoundError  # noqa: E402
from clinic.logic.events import get_buffered_events  # noqa: E402
from clinic.models.progress import ProgressState  # noqa: E402


class FakeProgressApi:
    """In-memory progress backend with scripted failures.

    ``create_failures`` / ``update_failures`` / ``delete_failures`` are lists
    of exceptions raised, in order, by the next calls. ``update_delays`` maps
    a call index to a sleep in seconds, used to force out-of-order completion.
    ``remote`` holds what the service would store, and ``observed`` every
    remote state after each applied write.
    """

    def __init__(self) -> None:
        self.create_calls: List[ProgressState] = []
        self.update_calls: List[tuple[str, ProgressState]] = []
        self.delete_calls: List[str] = []
        self.get_calls: List[str] = []
        self.create_failures: List[BaseException] = []
        self.update_failures: List[BaseException] = []
        self.delete_failures: List[BaseException] = []
        self.update_delays: Dict[int, float] = {}
        self.remote: Dict[str, dict] = {}
        self.observed: List[dict] = []
        self._counter = 0

    async def create_progress(self, state: ProgressState) -> str:
        self.create_calls.append(state)
        if self.create_failures:
            raise self.create_failures.pop(0)
        self._counter += 1
        session_id = f"session-{self._counter}"
        self.remote[session_id] = state.to_payload()
        return session_id

    async def update_progress(self, session_id: str, state: ProgressState) -> Any:
        index = len(self.update_calls)
        self.update_calls.append((session_id, state))
        delay = self.update_delays.get(index)
        if delay:
            await anyio.sleep(delay)
        if self.update_failures:
            raise self.update_failures.pop(0)
        payload = state.to_payload()
        self.remote[session_id] = payload
        self.observed.append({"session_id": session_id, **payload})
        return payload

    async def get_progress(self, session_id: str) -> dict:
        self.get_calls.append(session_id)
        if session_id not in self.remote:
            raise NotFoundError(status=404)
        return {"session_id": session_id, **self.remote[session_id]}

    async def delete_progress(self, session_id: str) -> None:
        self.delete_calls.append(session_id)
        if self.delete_failures:
            raise self.delete_failures.pop(0)
        self.remote.pop(session_id, None)


@pytest.fixture()
def fake_api() -> FakeProgressApi:
    return FakeProgressApi()


@pytest.fixture()
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        api=ApiConfig(base_url="http://testserver/api/v1"),
        retry=RetryConfig(max_retries=3, base_delay_ms=0, max_delay_ms=0),
        autosave=AutosaveConfig(context_dir=str(tmp_path / "context")),
        database=DatabaseConfig(dsn=f"sqlite:///{tmp_path / 'progress.db'}"),
        progress=ProgressServiceConfig(abandon_after_hours=24),
    )


@pytest.fixture()
def service_app(app_config):
    from clinic.main import create_app

    app = create_app(app_config)
    yield app
    reset_engine()


@pytest.fixture()
def client(service_app):
    from fastapi.testclient import TestClient

    with TestClient(service_app) as c:
        yield c


@pytest.fixture(autouse=True)
def _clear_event_buffer():
    get_buffered_events(clear=True)
    yield
    get_buffered_events(clear=True)


@pytest.fixture()
def initial_state() -> Dict[str, Any]:
    return {
        "current_step": 0,
        "total_steps": 15,
        "responses": {},
        "contact_hint": {"email": "guest@example.com"},
    }
