"""Bounded worker pool for independent child-process invocations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Sequence

from loguru import logger

from lspharness.utils.exceptions import UnitCrash, UnitFailure


class UnitStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CRASHED = "crashed"


@dataclass(frozen=True, slots=True)
class WorkUnit:
    """One invocation: ``key`` identifies it and orders the results."""

    key: str
    command: tuple[str, ...]
    input: bytes | None = None
    cwd: str | None = None
    env: dict[str, str] | None = field(default=None, hash=False)
    timeout: float | None = None


@dataclass(slots=True)
class UnitOutcome:
    """What an executor reports back for one unit."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    crash_reason: str | None = None


@dataclass(slots=True)
class WorkResult:
    unit: WorkUnit
    status: UnitStatus
    exit_code: int | None
    stdout: str
    stderr: str
    started_at: float
    finished_at: float
    error: UnitFailure | UnitCrash | None = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at) * 1000.0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


@dataclass(slots=True)
class PoolSummary:
    passed: int
    failed: int
    crashed: int
    elapsed_ms: float

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.crashed

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.crashed == 0


UnitExecutor = Callable[[WorkUnit], Awaitable[UnitOutcome]]
ResultCallback = Callable[[WorkResult], None]


def classify_exit_code(code: int | None) -> UnitStatus:
    """0 passes, 1 is an expected failure, anything else (signals included) crashed."""
    if code == 0:
        return UnitStatus.PASSED
    if code == 1:
        return UnitStatus.FAILED
    return UnitStatus.CRASHED


async def execute_unit(unit: WorkUnit) -> UnitOutcome:
    """Run the unit's command to completion, capturing stdout and stderr."""
    process = await asyncio.create_subprocess_exec(
        *unit.command,
        stdin=asyncio.subprocess.PIPE if unit.input is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=unit.cwd,
        env=unit.env,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(unit.input), timeout=unit.timeout)
    except asyncio.TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()
        return UnitOutcome(
            exit_code=process.returncode,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            crash_reason=f"timed out after {unit.timeout} seconds",
        )
    except asyncio.CancelledError:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
        raise
    return UnitOutcome(
        exit_code=process.returncode,
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
    )


def _crash_reason(code: int | None) -> str:
    if code is None:
        return "no exit code"
    if code < 0:
        return f"killed by signal {-code}"
    return f"exit {code}"


class WorkerPool:
    """Runs units with at most ``concurrency`` in flight.

    Workers claim units from a shared cursor; claiming has no await between
    reading and advancing it, so every unit is taken exactly once. A unit's
    failure or crash becomes its WorkResult and never reaches the caller.
    """

    def __init__(
        self,
        concurrency: int,
        *,
        executor: UnitExecutor = execute_unit,
        on_result: ResultCallback | None = None,
    ):
        self.concurrency = max(1, int(concurrency))
        self.executor = executor
        self.on_result = on_result

    async def run(self, units: Sequence[WorkUnit]) -> list[WorkResult]:
        units = list(units)
        results: list[WorkResult] = []
        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while True:
                index = cursor
                cursor += 1
                if index >= len(units):
                    return
                result = await self._run_one(units[index])
                results.append(result)
                if self.on_result is not None:
                    try:
                        self.on_result(result)
                    except Exception:
                        logger.exception("on_result callback failed for {}", result.unit.key)

        workers = min(self.concurrency, len(units))
        logger.debug("Running {} unit(s) on {} worker(s)", len(units), workers)
        await asyncio.gather(*(worker() for _ in range(workers)))
        results.sort(key=lambda r: r.unit.key)
        return results

    async def _run_one(self, unit: WorkUnit) -> WorkResult:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            outcome = await self.executor(unit)
        except Exception as exc:
            logger.warning("Unit {} could not run: {}", unit.key, exc)
            outcome = UnitOutcome(exit_code=None, stderr=str(exc), crash_reason=f"{type(exc).__name__}: {exc}")
        finished = loop.time()
        status = UnitStatus.CRASHED if outcome.crash_reason else classify_exit_code(outcome.exit_code)
        error: UnitFailure | UnitCrash | None = None
        if status is UnitStatus.FAILED:
            error = UnitFailure(unit.key, 1)
        elif status is UnitStatus.CRASHED:
            error = UnitCrash(unit.key, outcome.exit_code, outcome.crash_reason or _crash_reason(outcome.exit_code))
        return WorkResult(
            unit=unit,
            status=status,
            exit_code=outcome.exit_code,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            started_at=started,
            finished_at=finished,
            error=error,
        )


async def run_units(
    units: Sequence[WorkUnit],
    concurrency: int,
    *,
    executor: UnitExecutor = execute_unit,
    on_result: ResultCallback | None = None,
) -> list[WorkResult]:
    """Run ``units`` through a WorkerPool; one result per unit, sorted by key."""
    return await WorkerPool(concurrency, executor=executor, on_result=on_result).run(units)


def summarize(results: Sequence[WorkResult]) -> PoolSummary:
    """Tally outcomes and wall time (first start to last finish)."""
    passed = sum(1 for r in results if r.status is UnitStatus.PASSED)
    failed = sum(1 for r in results if r.status is UnitStatus.FAILED)
    crashed = sum(1 for r in results if r.status is UnitStatus.CRASHED)
    elapsed = 0.0
    if results:
        elapsed = (max(r.finished_at for r in results) - min(r.started_at for r in results)) * 1000.0
    return PoolSummary(passed=passed, failed=failed, crashed=crashed, elapsed_ms=elapsed)
