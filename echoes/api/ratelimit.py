"""
Fixed-window rate limiting for the inbound API
"""

from dataclasses import dataclass
from typing import Callable, Dict

from ..utils.helpers import now_ms


@dataclass
class WindowRecord:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after_s: int


class FixedWindowRateLimiter:
    """
    Per-client fixed window counter

    Each client key gets ``max_requests`` per window; the window starts at the
    client's first request. Expired records are dropped lazily once the store
    grows past ``sweep_threshold`` keys.

    Args:
        max_requests: Requests allowed per window
        window_seconds: Window length
        clock: Callable returning epoch milliseconds
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        clock: Callable[[], int] = now_ms,
        sweep_threshold: int = 10_000,
    ):
        self.max_requests = max_requests
        self.window_ms = int(window_seconds * 1000)
        self.clock = clock
        self.sweep_threshold = sweep_threshold
        self._records: Dict[str, WindowRecord] = {}

    def check(self, key: str) -> RateDecision:
        """Count one request for ``key`` and decide whether it may proceed"""
        now = self.clock()
        if len(self._records) >= self.sweep_threshold:
            self._sweep(now)

        record = self._records.get(key)
        if record is None or now > record.reset_at_ms:
            record = WindowRecord(count=0, reset_at_ms=now + self.window_ms)
            self._records[key] = record

        if record.count >= self.max_requests:
            retry_after = max(1, -(-(record.reset_at_ms - now) // 1000))
            return RateDecision(allowed=False, remaining=0, retry_after_s=retry_after)

        record.count += 1
        return RateDecision(allowed=True, remaining=self.max_requests - record.count, retry_after_s=0)

    def _sweep(self, now: int) -> None:
        expired = [key for key, record in self._records.items() if now > record.reset_at_ms]
        for key in expired:
            del self._records[key]

    def __len__(self) -> int:
        return len(self._records)
