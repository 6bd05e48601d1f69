"""In-memory job record and its phase state machine."""
import asyncio
import enum
import random
import time
from datetime import datetime
from typing import Optional


class JobPhase(str, enum.Enum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


TERMINAL_PHASES = frozenset({JobPhase.succeeded, JobPhase.failed})

_TRANSITIONS = {
    (JobPhase.queued, JobPhase.running),
    (JobPhase.running, JobPhase.succeeded),
    (JobPhase.running, JobPhase.failed),
}


def new_job_id() -> str:
    """Millisecond timestamp plus a random suffix, unique across concurrent uploads."""
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9 - 1):09d}"


class Job:
    def __init__(self, job_id: str, input_path: str, output_path: str,
                 input_format: str, output_format: str):
        self.id = job_id
        self.input_path = input_path
        self.output_path = output_path
        self.input_format = input_format
        self.output_format = output_format
        self.phase = JobPhase.queued
        self.created_at = datetime.utcnow()
        self.started_at: Optional[datetime] = None
        self.terminal_at: Optional[datetime] = None
        self.last_reported_percent = 0.0
        self.error: Optional[str] = None
        self.phase_history = [JobPhase.queued]
        # monotonic clock reading at start, used for ETA
        self.started_monotonic: Optional[float] = None
        self._done = asyncio.Event()

    @property
    def output_filename(self) -> str:
        return f"{self.id}.{self.output_format}"

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def can_transition(self, target: JobPhase) -> bool:
        return (self.phase, target) in _TRANSITIONS

    def transition(self, target: JobPhase) -> bool:
        """Move to ``target`` if the edge is legal. Returns False otherwise."""
        if not self.can_transition(target):
            return False
        self.phase = target
        self.phase_history.append(target)
        if target == JobPhase.running:
            self.started_at = datetime.utcnow()
            self.started_monotonic = time.monotonic()
        elif target in TERMINAL_PHASES:
            self.terminal_at = datetime.utcnow()
        return True

    def clamp_percent(self, raw: float) -> float:
        """Raise ``last_reported_percent`` to ``raw`` if higher; return the value to publish."""
        value = min(100.0, max(0.0, float(raw)))
        if value > self.last_reported_percent:
            self.last_reported_percent = value
        return self.last_reported_percent

    def release_waiters(self) -> None:
        """Wake ``wait()`` callers once terminal side effects are in place."""
        self._done.set()

    async def wait(self) -> JobPhase:
        await self._done.wait()
        return self.phase

    def to_dict(self) -> dict:
        return {
            "job_id": self.id,
            "phase": self.phase.value,
            "input_format": self.input_format,
            "output_format": self.output_format,
            "filename": self.output_filename if self.phase == JobPhase.succeeded else None,
            "percent": round(self.last_reported_percent, 2),
            "error": self.error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "terminal_at": self.terminal_at,
        }
