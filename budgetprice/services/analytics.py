"""
Outbound API call tracking.

Adapters report every platform call attempt as (endpoint, success,
elapsed_ms). Where the numbers end up is up to the recorder.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict

from budgetprice.utils.logger import get_logger, log_with_context

logger = get_logger(__name__)


class ApiCallRecorder(ABC):
    """Sink for API call observations."""

    @abstractmethod
    def record(self, endpoint: str, success: bool, elapsed_ms: float) -> None:
        pass


class LoggingCallRecorder(ApiCallRecorder):
    """Writes one structured log line per call."""

    def __init__(self, store_id: str = '', platform: str = ''):
        self.store_id = store_id
        self.platform = platform

    def record(self, endpoint: str, success: bool, elapsed_ms: float) -> None:
        log_with_context(
            logger, "INFO" if success else "WARNING",
            "Platform API call",
            store_id=self.store_id,
            platform=self.platform,
            endpoint=endpoint,
            success=success,
            elapsed_ms=round(elapsed_ms, 1)
        )


@dataclass
class EndpointStats:
    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class InMemoryCallRecorder(ApiCallRecorder):
    """Thread-safe per-endpoint counters for diagnostics."""

    def __init__(self):
        self._stats: Dict[str, EndpointStats] = {}
        self._lock = threading.Lock()

    def record(self, endpoint: str, success: bool, elapsed_ms: float) -> None:
        with self._lock:
            stats = self._stats.setdefault(endpoint, EndpointStats())
            stats.calls += 1
            stats.total_ms += elapsed_ms
            if not success:
                stats.failures += 1

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """
        Current counters.

        Returns:
            {endpoint: {"calls", "failures", "average_ms"}}
        """
        with self._lock:
            return {
                endpoint: {
                    "calls": stats.calls,
                    "failures": stats.failures,
                    "average_ms": round(stats.average_ms, 1),
                }
                for endpoint, stats in self._stats.items()
            }
