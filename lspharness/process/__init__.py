"""Peer process supervision."""

from .memory import MemorySample, PeakMemoryMonitor, read_rss_kb
from .supervisor import DEFAULT_FATAL_MARKERS, SHUTDOWN_CAUSE, ProcessSupervisor

__all__ = [
    "DEFAULT_FATAL_MARKERS",
    "SHUTDOWN_CAUSE",
    "MemorySample",
    "PeakMemoryMonitor",
    "ProcessSupervisor",
    "read_rss_kb",
]
