"""Parallel test-file execution on the worker pool."""

from __future__ import annotations

import shlex
from typing import Sequence

from loguru import logger

from lspharness.config.schema import PoolConfig
from lspharness.runner.discovery import build_units, discover_files
from lspharness.runner.pool import ResultCallback, WorkResult, WorkUnit, run_units


class ParallelService:
    """Discovers test files and runs one child process per file."""

    def __init__(self, pool: PoolConfig):
        self.pool = pool

    def collect(
        self,
        paths: Sequence[str] | None = None,
        *,
        name_filter: str | None = None,
        command: str | None = None,
        timeout: float | None = None,
    ) -> list[WorkUnit]:
        search = list(paths) if paths else list(self.pool.paths)
        files = discover_files(search, self.pool.test_suffixes)
        argv = shlex.split(command) if command else list(self.pool.command)
        unit_timeout = timeout if timeout is not None else self.pool.unit_timeout_seconds
        units = build_units(files, argv, name_filter=name_filter, timeout=unit_timeout)
        logger.debug("Collected {} unit(s) from {} file(s) under {}", len(units), len(files), search)
        return units

    async def run(
        self,
        units: Sequence[WorkUnit],
        *,
        jobs: int | None = None,
        on_result: ResultCallback | None = None,
    ) -> list[WorkResult]:
        return await run_units(units, jobs if jobs is not None else self.pool.jobs, on_result=on_result)
