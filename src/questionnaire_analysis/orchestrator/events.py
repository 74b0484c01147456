"""In-process event bus for job progress, chunks, and errors."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable

from questionnaire_analysis.schemas import StreamEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[StreamEvent], None]


class EventBus:
    """Synchronous fan-out to subscribers plus a bounded replay history.

    A subscriber that raises is logged and skipped; it never affects the job
    that published the event.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._subscribers: list[Subscriber] = []
        self._history: deque[StreamEvent] = deque(maxlen=max(1, history_size))
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: StreamEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed for job %s (%s).", event.job_id, event.chunk_type
                )

    def events_for(self, job_id: str) -> list[StreamEvent]:
        with self._lock:
            return [event for event in self._history if event.job_id == job_id]

    def history(self) -> list[StreamEvent]:
        with self._lock:
            return list(self._history)
