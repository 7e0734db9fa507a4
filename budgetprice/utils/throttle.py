"""
Reject-based request throttle for the HTTP route layer.

Unlike the outbound RateLimiter, which delays callers until a slot opens,
this throttle answers immediately: a client over its budget is refused with
a retry-after hint and blocked for a cooling-off period.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

MINUTE = 60.0
HOUR = 3600.0
MINUTE_BLOCK_SECONDS = 300.0
HOUR_BLOCK_SECONDS = 3600.0


@dataclass
class ThrottleDecision:
    """Outcome of a throttle check."""

    allowed: bool
    retry_after: int = 0
    reason: Optional[str] = None


@dataclass
class _Tracker:
    minute_count: int = 0
    minute_started: float = 0.0
    hour_count: int = 0
    hour_reset: float = 0.0
    blocked_until: float = 0.0


class RequestThrottle:
    """
    Per-client minute/hour counters with temporary blocking.

    Exceeding the per-minute budget blocks the client for 5 minutes;
    exceeding the per-hour budget blocks it for an hour.
    """

    def __init__(
        self,
        per_minute: int = 30,
        per_hour: int = 1000,
        clock: Callable[[], float] = time.monotonic
    ):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self._clock = clock
        self._trackers: Dict[str, _Tracker] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + MINUTE

    def check(self, key: str) -> ThrottleDecision:
        """
        Count a request for key and decide whether it may proceed.

        Args:
            key: Client identity (e.g. "ip:customer_id")

        Returns:
            ThrottleDecision; rejected requests carry retry_after seconds
        """
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)

            tracker = self._trackers.get(key)
            if tracker is None:
                tracker = _Tracker(minute_started=now, hour_reset=now + HOUR)
                self._trackers[key] = tracker

            if now < tracker.blocked_until:
                return ThrottleDecision(
                    allowed=False,
                    retry_after=_ceil_seconds(tracker.blocked_until - now),
                    reason="blocked"
                )

            if now >= tracker.hour_reset:
                tracker.hour_count = 0
                tracker.hour_reset = now + HOUR

            if now - tracker.minute_started >= MINUTE:
                tracker.minute_count = 0
                tracker.minute_started = now

            tracker.minute_count += 1
            if tracker.minute_count > self.per_minute:
                tracker.blocked_until = now + MINUTE_BLOCK_SECONDS
                return ThrottleDecision(
                    allowed=False,
                    retry_after=int(MINUTE_BLOCK_SECONDS),
                    reason="Too many requests per minute"
                )

            tracker.hour_count += 1
            if tracker.hour_count > self.per_hour:
                tracker.blocked_until = now + HOUR_BLOCK_SECONDS
                return ThrottleDecision(
                    allowed=False,
                    retry_after=int(HOUR_BLOCK_SECONDS),
                    reason="Too many requests per hour"
                )

            return ThrottleDecision(allowed=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._trackers)

    def _sweep(self, now: float) -> None:
        """Forget clients whose hour window, minute window and block have all lapsed."""
        stale = [
            key for key, tracker in self._trackers.items()
            if now >= tracker.hour_reset
            and now >= tracker.blocked_until
            and now - tracker.minute_started >= MINUTE
        ]
        for key in stale:
            del self._trackers[key]
        self._next_sweep = now + MINUTE

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one client, or all clients when key is None."""
        with self._lock:
            if key is None:
                self._trackers.clear()
            else:
                self._trackers.pop(key, None)


def _ceil_seconds(value: float) -> int:
    whole = int(value)
    return whole if whole == value else whole + 1
