"""
Sliding-window throttle for outbound platform API calls.

Each platform gets a fixed budget of N calls per W seconds. A caller over
budget is delayed until the oldest call in the window ages out; calls are
never rejected.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Mapping, Tuple, Union

from budgetprice.adapters.base import UnsupportedPlatformError
from budgetprice.utils.logger import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Call budget for one platform."""

    max_requests: int
    window_seconds: float

    def __post_init__(self):
        if self.max_requests <= 0 or self.window_seconds <= 0:
            raise ValueError("Rate limit policy values must be positive")


DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    'shopify': RateLimitPolicy(40, 60),
    'magento': RateLimitPolicy(100, 60),
    'woocommerce': RateLimitPolicy(60, 60),
}


@dataclass
class _RateWindow:
    calls: Deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    """
    Delay-based per-platform throttle.

    Thread-safe: every platform window has its own lock. A caller that has
    to wait reserves its slot before sleeping, so the window stays accurate
    for concurrent callers even if the waiting caller is abandoned.

    Usage:
        limiter = RateLimiter({'shopify': RateLimitPolicy(40, 60)})
        limiter.acquire('shopify')
        response = session.get(url)
    """

    def __init__(
        self,
        policies: Mapping[str, Union[RateLimitPolicy, Tuple[int, int]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize rate limiter.

        Args:
            policies: Platform name -> policy or (max_requests, window_seconds)
            clock: Monotonic time source in seconds
            sleep: Blocking sleep function
        """
        source = DEFAULT_POLICIES if policies is None else policies
        self.policies: Dict[str, RateLimitPolicy] = {
            name: policy if isinstance(policy, RateLimitPolicy) else RateLimitPolicy(*policy)
            for name, policy in source.items()
        }
        self._clock = clock
        self._sleep = sleep
        self._windows: Dict[str, _RateWindow] = {
            name: _RateWindow() for name in self.policies
        }

    def acquire(self, platform: str) -> float:
        """
        Block until a call to platform is allowed, then record it.

        Args:
            platform: Platform name

        Returns:
            Seconds the caller was delayed (0.0 if a slot was free)

        Raises:
            UnsupportedPlatformError: If no policy exists for platform
        """
        policy, window = self._lookup(platform)

        with window.lock:
            now = self._clock()
            self._prune(window, now - policy.window_seconds)

            wait = 0.0
            if len(window.calls) >= policy.max_requests:
                # Slot frees when the Nth most recent call leaves the window
                wait = window.calls[-policy.max_requests] + policy.window_seconds - now
                wait = max(wait, 0.0)

            window.calls.append(now + wait)

        if wait > 0:
            log_with_context(
                logger, "INFO",
                "Rate limit reached, delaying call",
                platform=platform,
                wait_seconds=round(wait, 3)
            )
            self._sleep(wait)

        return wait

    def pending(self, platform: str) -> int:
        """
        Number of calls counted in the current window.

        Args:
            platform: Platform name

        Returns:
            Count of recorded (or reserved) calls inside the window
        """
        policy, window = self._lookup(platform)
        with window.lock:
            self._prune(window, self._clock() - policy.window_seconds)
            return len(window.calls)

    def _lookup(self, platform: str) -> Tuple[RateLimitPolicy, _RateWindow]:
        name = str(getattr(platform, 'value', platform))
        if name not in self.policies:
            raise UnsupportedPlatformError(f"No rate limit policy for platform '{name}'")
        return self.policies[name], self._windows[name]

    @staticmethod
    def _prune(window: _RateWindow, window_start: float) -> None:
        while window.calls and window.calls[0] <= window_start:
            window.calls.popleft()
