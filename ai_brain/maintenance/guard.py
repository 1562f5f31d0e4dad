from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ai_brain.models import utcnow


logger = logging.getLogger("ai_brain.maintenance.guard")


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    IDLE_AFTER_ERROR = "idle_after_error"


class JobGuard:
    """Single-flight token for one maintenance job.

    ``try_acquire`` moves Idle -> Running and fails while a run is in flight;
    ``release`` always returns to an idle state, remembering whether the run
    ended with an error.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._lock = threading.Lock()
        self.state = JobState.IDLE
        self.last_started: Optional[datetime] = None
        self.last_finished: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.state is JobState.RUNNING

    def try_acquire(self) -> bool:
        with self._lock:
            if self.state is JobState.RUNNING:
                return False
            self.state = JobState.RUNNING
            self.last_started = utcnow()
            return True

    def release(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self.state = JobState.IDLE_AFTER_ERROR if error is not None else JobState.IDLE
            self.last_error = str(error) if error is not None else None
            self.last_finished = utcnow()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "last_started": self.last_started.isoformat() if self.last_started else None,
            "last_finished": self.last_finished.isoformat() if self.last_finished else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerContext:
    """Everything a maintenance run needs: the engines, the turn queue and the job guards."""

    episodic: Any
    memory: Any = None
    chains: Any = None
    personality: Any = None
    user_model: Any = None
    emotions: Any = None
    turn_queue: Any = None
    turn_processor: Any = None
    clock: Callable[[], datetime] = utcnow
    guards: Dict[str, JobGuard] = field(default_factory=dict)
    _guards_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def guard(self, job_id: str) -> JobGuard:
        with self._guards_lock:
            guard = self.guards.get(job_id)
            if guard is None:
                guard = JobGuard(job_id)
                self.guards[job_id] = guard
            return guard

    def now(self) -> datetime:
        return self.clock()
