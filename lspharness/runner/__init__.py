"""Bounded worker-pool runner."""

from .discovery import DEFAULT_TEST_SUFFIXES, build_units, discover_files, is_test_file
from .pool import (
    PoolSummary,
    UnitOutcome,
    UnitStatus,
    WorkResult,
    WorkUnit,
    WorkerPool,
    classify_exit_code,
    execute_unit,
    run_units,
    summarize,
)

__all__ = [
    "DEFAULT_TEST_SUFFIXES",
    "build_units",
    "discover_files",
    "is_test_file",
    "PoolSummary",
    "UnitOutcome",
    "UnitStatus",
    "WorkResult",
    "WorkUnit",
    "WorkerPool",
    "classify_exit_code",
    "execute_unit",
    "run_units",
    "summarize",
]
