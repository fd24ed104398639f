"""Context-scoped cache of the active autosave session id.

A store is constructed by the host and injected into the tracker. The
in-memory store lives as long as the process; the file store lives as long as
its context directory, so restarting the host inside the same context resumes
the same session while a fresh context starts empty.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "incomplete_survey_session"


class SessionIdentityStore(Protocol):
    def get(self) -> Optional[str]: ...

    def set(self, session_id: str) -> None: ...

    def clear(self) -> None: ...


class InMemorySessionIdentityStore:
    """Process-lifetime store; the default for tests and one-shot runs."""

    def __init__(self, session_id: Optional[str] = None) -> None:
        self._session_id = session_id or None

    def get(self) -> Optional[str]:
        return self._session_id

    def set(self, session_id: str) -> None:
        if not session_id:
            raise ValueError("session_id must be a non-empty string")
        self._session_id = session_id

    def clear(self) -> None:
        self._session_id = None


class FileSessionIdentityStore:
    """Store backed by a small JSON document inside a context directory.

    The document holds a single key, ``incomplete_survey_session``. A missing,
    unreadable or corrupt document reads as "no session".
    """

    FILENAME = "session_storage.json"

    def __init__(self, context_dir: str | os.PathLike[str]) -> None:
        self._path = Path(context_dir) / self.FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict:
        try:
            if not self._path.exists():
                return {}
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("session_store.read_failed path=%s error=%s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def get(self) -> Optional[str]:
        value = self._read().get(SESSION_STORAGE_KEY)
        return value if isinstance(value, str) and value else None

    def set(self, session_id: str) -> None:
        if not session_id:
            raise ValueError("session_id must be a non-empty string")
        data = self._read()
        data[SESSION_STORAGE_KEY] = session_id
        self._write(data)

    def clear(self) -> None:
        data = self._read()
        if SESSION_STORAGE_KEY not in data:
            return
        data.pop(SESSION_STORAGE_KEY, None)
        self._write(data)


__all__ = [
    "SESSION_STORAGE_KEY",
    "SessionIdentityStore",
    "InMemorySessionIdentityStore",
    "FileSessionIdentityStore",
]
