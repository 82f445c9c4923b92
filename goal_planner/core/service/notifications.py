from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionEvent:
    task_id: str
    title: str
    completed_at: datetime

    def message(self) -> str:
        when = self.completed_at.strftime("%b %d, %Y at %H:%M %Z").strip()
        return f"Task completed: {self.title}\nCompletion date: {when}"


class CompletionNotifier(Protocol):
    def notify(self, event: CompletionEvent) -> None: ...


class LoggingNotifier:
    def notify(self, event: CompletionEvent) -> None:
        logger.info("%s", event.message())


class RecordingNotifier:
    """Keeps every event in memory; the assistant side drains it between chat turns."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[CompletionEvent] = []

    def notify(self, event: CompletionEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[CompletionEvent]:
        with self._lock:
            return list(self._events)

    def drain(self) -> list[CompletionEvent]:
        with self._lock:
            out, self._events = self._events, []
        return out
