"""Domain event constants and publisher.

Defines event type constants and a simple publish() callable used by the
progress service and the autosave tracker. Subscribers let a host application
observe autosave failures without scraping logs.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Deque, Dict, List
import logging

logger = logging.getLogger(__name__)

PROGRESS_SAVED = "progress.saved"
PROGRESS_DELETED = "progress.deleted"
AUTOSAVE_FAILED = "autosave.failed"

Subscriber = Callable[[str, Dict[str, Any]], None]

_SUBSCRIBERS: List[Subscriber] = []

# Most recent events only; oldest entries drop off once full
EVENT_BUFFER_LIMIT = 1000
EVENT_BUFFER: Deque[Dict[str, Any]] = deque(maxlen=EVENT_BUFFER_LIMIT)


def publish(event_type: str, payload: Dict[str, Any]) -> None:
    """Publish a domain event to the log, the buffer and every subscriber.

    A failing subscriber is logged and skipped so one bad listener cannot stop
    delivery to the others.
    """
    logger.info("event_publish type=%s payload=%s", event_type, payload)
    EVENT_BUFFER.append({"type": event_type, "payload": payload})
    for subscriber in list(_SUBSCRIBERS):
        try:
            subscriber(event_type, payload)
        except Exception:
            logger.error("event_subscriber_failed type=%s", event_type, exc_info=True)


def subscribe(subscriber: Subscriber) -> Callable[[], None]:
    """Register *subscriber*; returns a callable that unregisters it."""
    _SUBSCRIBERS.append(subscriber)

    def _unsubscribe() -> None:
        if subscriber in _SUBSCRIBERS:
            _SUBSCRIBERS.remove(subscriber)

    return _unsubscribe


def get_buffered_events(clear: bool = True) -> List[Dict[str, Any]]:
    """Return buffered domain events; optionally clear the buffer."""
    events = list(EVENT_BUFFER)
    if clear:
        EVENT_BUFFER.clear()
    return events


__all__ = [
    "PROGRESS_SAVED",
    "PROGRESS_DELETED",
    "AUTOSAVE_FAILED",
    "publish",
    "subscribe",
    "get_buffered_events",
    "EVENT_BUFFER",
    "EVENT_BUFFER_LIMIT",
]
