import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class StatsSnapshot:
    total: int
    succeeded: int
    failed: int

    def to_dict(self) -> dict:
        return {"total": self.total, "succeeded": self.succeeded, "failed": self.failed}


class ConversionStats:
    """Process-lifetime conversion counters.

    Only the orchestrator's terminal handler calls ``record``; everything else
    reads snapshots.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._succeeded = 0
        self._failed = 0

    def record(self, succeeded: bool) -> StatsSnapshot:
        with self._lock:
            if succeeded:
                self._succeeded += 1
            else:
                self._failed += 1
            return self._snapshot()

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            total=self._succeeded + self._failed,
            succeeded=self._succeeded,
            failed=self._failed,
        )
