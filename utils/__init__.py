"""
Shared utilities: logging and timing marks.
"""

from .logger import logger, setup_logging
from .metrics import PerformanceMonitor, Measurement, get_performance_monitor

__all__ = [
    "logger",
    "setup_logging",
    "PerformanceMonitor",
    "Measurement",
    "get_performance_monitor",
]
