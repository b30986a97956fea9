"""
Timing marks for the speech pipeline.

Records named start marks and turns them into measurements
(milliseconds). Only used for diagnostics and the synthesis_time_ms
field of synthesis results.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from config import settings
from utils.logger import logger


@dataclass(frozen=True)
class Measurement:
    """A completed measurement"""
    name: str
    duration_ms: float
    start_time: float
    end_time: float


class PerformanceMonitor:
    """Named marks and bounded measurement history"""

    def __init__(
        self,
        enabled: bool = True,
        max_history: Optional[int] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.enabled = enabled
        self._clock = clock
        self._marks: Dict[str, float] = {}
        self._measurements: Deque[Measurement] = deque(
            maxlen=max_history or settings.METRICS_HISTORY_SIZE
        )

    def mark(self, name: str) -> None:
        """Create a mark at the current time"""
        if not self.enabled:
            return
        self._marks[name] = self._clock()

    def measure(self, name: str, start_mark: str) -> float:
        """
        Measure from a start mark to now.

        Returns:
            Duration in milliseconds, or 0.0 when disabled or the mark is unknown
        """
        if not self.enabled:
            return 0.0

        start = self._marks.get(start_mark)
        if start is None:
            logger.debug(f"Unknown performance mark: {start_mark}")
            return 0.0

        end = self._clock()
        measurement = Measurement(
            name=name,
            duration_ms=(end - start) * 1000.0,
            start_time=start,
            end_time=end,
        )
        self._measurements.append(measurement)
        return measurement.duration_ms

    def clear_mark(self, name: str) -> None:
        self._marks.pop(name, None)

    def get_measurements(self, name: Optional[str] = None) -> List[Measurement]:
        """Get recorded measurements, optionally filtered by name"""
        if name is None:
            return list(self._measurements)
        return [m for m in self._measurements if m.name == name]

    def clear(self) -> None:
        self._marks.clear()
        self._measurements.clear()


_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """Get or create the shared monitor"""
    global _monitor
    if _monitor is None:
        _monitor = PerformanceMonitor()
    return _monitor
