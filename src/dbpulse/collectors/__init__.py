"""Collection framework for dbpulse.

This module provides the infrastructure for periodic metric collection:

- Collector: Abstract base class for database collectors
- Scheduler: Periodic collect -> upload driver with jitter and shutdown
- ShutdownSignal: One-way shutdown flag with signal handler installation
- create_collector: Collector lookup by import path or entry point

All operations are asyncio-based for non-blocking performance.
"""

from dbpulse.collectors.base import (
    Collector,
    CollectorConnectionError,
    CollectorError,
    CollectorPermissionError,
    CollectorStats,
    DetectionError,
    InternalCollectorError,
    QueryError,
    UnsupportedVersionError,
)
from dbpulse.collectors.registry import CollectorLoadError, create_collector
from dbpulse.collectors.scheduler import CycleResult, Scheduler, SchedulerError, SchedulerStats
from dbpulse.collectors.shutdown import ShutdownSignal, install_signal_handlers

__all__ = [
    "Collector",
    "CollectorError",
    "CollectorStats",
    "CollectorConnectionError",
    "QueryError",
    "CollectorPermissionError",
    "UnsupportedVersionError",
    "DetectionError",
    "InternalCollectorError",
    "CollectorLoadError",
    "create_collector",
    "CycleResult",
    "Scheduler",
    "SchedulerError",
    "SchedulerStats",
    "ShutdownSignal",
    "install_signal_handlers",
]
