"""Campaign event log.

Append-only record of what happened during a campaign: new coverage,
test transitions, shrink progress and worker lifecycle. It is the only
channel reporting code reads from. Every event is also emitted through
the standard logger with the worker id attached.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    NEW_COVERAGE = "new_coverage"
    TEST_FALSIFIED = "test_falsified"
    TEST_OPTIMIZED = "test_optimized"
    SHRINK_PROGRESS = "shrink_progress"
    TEST_SOLVED = "test_solved"
    TEST_FAILED = "test_failed"
    EXECUTION_ABORTED = "execution_aborted"
    WORKER_RESTARTED = "worker_restarted"
    WORKER_STOPPED = "worker_stopped"


_LOG_LEVELS = {
    EventKind.SHRINK_PROGRESS: logging.DEBUG,
    EventKind.EXECUTION_ABORTED: logging.DEBUG,
    EventKind.TEST_FAILED: logging.WARNING,
    EventKind.WORKER_RESTARTED: logging.WARNING,
}


@dataclass(frozen=True)
class CampaignEvent:
    worker_id: int
    kind: EventKind
    message: str
    timestamp: float = field(default_factory=time.time)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }


class EventLog:
    """Thread-safe, append-only event list."""

    def __init__(self, campaign_id: str = "") -> None:
        self.campaign_id = campaign_id
        self._lock = threading.Lock()
        self._events: list[CampaignEvent] = []

    def append(self, worker_id: int, kind: EventKind, message: str, **payload: Any) -> CampaignEvent:
        event = CampaignEvent(worker_id=worker_id, kind=kind, message=message, payload=payload)
        with self._lock:
            self._events.append(event)
        logger.log(
            _LOG_LEVELS.get(kind, logging.INFO),
            message,
            extra={
                "worker_id": worker_id,
                "campaign_id": self.campaign_id,
                "event_kind": kind.value,
                **({"test_name": payload["test"]} if "test" in payload else {}),
            },
        )
        return event

    def events(self) -> list[CampaignEvent]:
        with self._lock:
            return list(self._events)

    def for_worker(self, worker_id: int) -> list[CampaignEvent]:
        with self._lock:
            return [e for e in self._events if e.worker_id == worker_id]

    def of_kind(self, kind: EventKind) -> list[CampaignEvent]:
        with self._lock:
            return [e for e in self._events if e.kind is kind]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
