"""
Process-wide peer state: reachability, failure counters and the transfer
ledger.

Every structure here is guarded by its own lock and only hands out copies,
so the acceptor, the worker pool and outbound sessions can share them
without external locking.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .config import FAILURE_THRESHOLD


class Direction(str, Enum):
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class TransferRecord:
    """One completed or failed transfer."""

    file_name: str
    direction: Direction
    outcome: Outcome
    peer: str
    timestamp: str = field(default_factory=_now)

    def __str__(self) -> str:
        return (
            f"{self.timestamp}  {self.direction.value:<8} {self.outcome.value:<7} "
            f"{self.file_name}  ({self.peer})"
        )


class TransferLedger:
    """Append-only, chronological record of transfers."""

    def __init__(self):
        self._records: list[TransferRecord] = []
        self._lock = threading.Lock()

    def append(self, record: TransferRecord) -> list[TransferRecord]:
        """Add *record* and return a snapshot that includes it."""
        with self._lock:
            self._records.append(record)
            return list(self._records)

    def snapshot(self) -> list[TransferRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class PeerStatusTracker:
    """Tracks which endpoints are reachable.

    An endpoint goes offline once its consecutive failure count reaches
    *threshold*; any success resets the count and marks it online again.
    """

    def __init__(self, threshold: int = FAILURE_THRESHOLD):
        self.threshold = threshold
        self._status: dict[str, bool] = {}
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def mark_online(self, endpoint: str) -> dict[str, bool]:
        """Reset the failure count for *endpoint* and mark it online."""
        with self._lock:
            self._failures[endpoint] = 0
            self._status[endpoint] = True
            return dict(self._status)

    def record_failure(self, endpoint: str) -> tuple[int, dict[str, bool] | None]:
        """Count a failure for *endpoint*.

        Returns (failure_count, status_snapshot).  The snapshot is None
        unless this failure changed the endpoint's status.
        """
        with self._lock:
            count = self._failures.get(endpoint, 0) + 1
            self._failures[endpoint] = count
            if count >= self.threshold and self._status.get(endpoint) is not False:
                self._status[endpoint] = False
                return count, dict(self._status)
            return count, None

    def failures(self, endpoint: str) -> int:
        with self._lock:
            return self._failures.get(endpoint, 0)

    def is_online(self, endpoint: str) -> bool | None:
        with self._lock:
            return self._status.get(endpoint)

    def snapshot(self) -> dict[str, bool]:
        with self._lock:
            return dict(self._status)
