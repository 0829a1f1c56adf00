from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
import threading
import time
from typing import Callable, Optional

from .metrics import LIMITER_RECORDS

logger = logging.getLogger("subgate.rate_limit")

Clock = Callable[[], float]


@dataclass
class WindowRecord:
    window_start: float
    prev_count: int = 0
    curr_count: int = 0
    banned_until: Optional[float] = None

    def banned_at(self, now: float) -> bool:
        return self.banned_until is not None and now < self.banned_until


class RateLimiter:
    """Weighted sliding-window counter with per-key temporary bans.

    Each key keeps two counters (previous and current fixed window) and the
    start of the current window. The previous window is weighted by how much
    of it still overlaps the sliding window ending now, which approximates a
    true sliding log with O(1) memory per key.

    Records are swept opportunistically from ``check_and_increment`` at most
    once per ``cleanup_interval``; ``sweep`` can also be called directly.
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        *,
        name: str = "default",
        cleanup_interval: float = 5 * 60,
        clock: Clock = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.name = name
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._records: dict[str, WindowRecord] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def now(self) -> float:
        return self._clock()

    # ---------- sweep ----------
    def _is_expired(self, record: WindowRecord, now: float) -> bool:
        elapsed = now - record.window_start
        if record.banned_until is not None:
            return now >= record.banned_until and elapsed >= self.window_seconds
        return elapsed >= self.window_seconds * 2

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, record in self._records.items() if self._is_expired(record, now)]
        for key in expired:
            del self._records[key]
        LIMITER_RECORDS.labels(limiter=self.name).set(len(self._records))
        return len(expired)

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete every record eligible for collection and return how many were removed."""
        now = self._clock() if now is None else now
        with self._lock:
            self._last_cleanup = now
            deleted = self._sweep_locked(now)
        if deleted:
            logger.info(
                "Cleaned up expired limiter records",
                extra={"event": "limiter_sweep", "limiter": self.name, "deleted": deleted},
            )
        return deleted

    def _maybe_sweep(self, now: float) -> None:
        with self._lock:
            if now - self._last_cleanup < self.cleanup_interval:
                return
        self.sweep(now)

    # ---------- window math ----------
    def _slide(self, record: WindowRecord, now: float) -> None:
        elapsed = now - record.window_start
        if elapsed < self.window_seconds:
            return

        windows_to_slide = math.floor(elapsed / self.window_seconds)
        if windows_to_slide == 1:
            record.prev_count = record.curr_count
        else:
            # A whole window without traffic: nothing left to carry over.
            record.prev_count = 0
        record.curr_count = 0
        record.window_start += windows_to_slide * self.window_seconds

    def _weighted(self, record: WindowRecord, now: float) -> int:
        elapsed = now - record.window_start
        prev_weight = max(0.0, 1 - elapsed / self.window_seconds)
        return math.floor(record.prev_count * prev_weight + record.curr_count)

    # ---------- public API ----------
    def check_and_increment(self, key: str) -> bool:
        """Count one occurrence for ``key``; return False when it must be refused."""
        now = self._clock()
        self._maybe_sweep(now)

        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._records[key] = WindowRecord(window_start=now, curr_count=1)
                return True

            if record.banned_at(now):
                return False
            if record.banned_until is not None:
                record.banned_until = None

            self._slide(record, now)
            if self._weighted(record, now) >= self.max_requests:
                return False

            record.curr_count += 1
            return True

    def weighted_count(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return 0
            self._slide(record, now)
            return self._weighted(record, now)

    def get_record(self, key: str) -> Optional[WindowRecord]:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record is not None else None

    def ban(self, key: str, duration_seconds: float) -> None:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = WindowRecord(window_start=now)
                self._records[key] = record
            record.banned_until = now + duration_seconds

    def is_banned(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            return record is not None and record.banned_at(now)

    def clear(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)
