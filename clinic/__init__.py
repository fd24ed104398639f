"""Financial Clinic survey progress and score normalization engine.

Client side: ``clinic.logic`` holds the score reconciler, the retrying call
executor, the autosave tracker and its session store, and the HTTP transport.
Server side: ``create_app`` builds the FastAPI progress service the tracker
talks to.
"""

from __future__ import annotations

from clinic.main import create_app

__all__ = ["create_app"]
