"""Tests for the bounded worker pool."""

import asyncio
import os
import sys
from collections import Counter

import pytest

from lspharness.runner.pool import (
    UnitOutcome,
    UnitStatus,
    WorkUnit,
    WorkerPool,
    classify_exit_code,
    execute_unit,
    run_units,
    summarize,
)
from lspharness.utils.exceptions import UnitCrash, UnitFailure


def _units(n: int) -> list[WorkUnit]:
    return [WorkUnit(key=f"unit_{i:02d}", command=("run", str(i))) for i in range(n)]


class RecordingExecutor:
    """Fake executor that tracks how many units are in flight."""

    def __init__(self, exit_codes: dict[str, int] | None = None, delay: float = 0.01):
        self.exit_codes = exit_codes or {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: Counter[str] = Counter()

    async def __call__(self, unit: WorkUnit) -> UnitOutcome:
        self.calls[unit.key] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return UnitOutcome(exit_code=self.exit_codes.get(unit.key, 0), stdout=f"ran {unit.key}\n")


@pytest.mark.asyncio
async def test_bounded_concurrency_and_one_result_per_unit():
    executor = RecordingExecutor(exit_codes={"unit_03": 2})
    results = await run_units(_units(10), 3, executor=executor)

    assert len(results) == 10
    assert [r.unit.key for r in results] == [f"unit_{i:02d}" for i in range(10)]
    assert executor.max_in_flight == 3
    assert set(executor.calls.values()) == {1}

    crashed = [r for r in results if r.status is UnitStatus.CRASHED]
    assert [r.unit.key for r in crashed] == ["unit_03"]
    assert isinstance(crashed[0].error, UnitCrash)
    assert crashed[0].exit_code == 2


@pytest.mark.asyncio
async def test_results_sorted_even_when_finishing_out_of_order():
    class Staggered(RecordingExecutor):
        async def __call__(self, unit):
            self.delay = 0.05 if unit.key == "unit_00" else 0.001
            return await super().__call__(unit)

    results = await run_units(_units(4), 4, executor=Staggered())
    assert [r.unit.key for r in results] == ["unit_00", "unit_01", "unit_02", "unit_03"]


@pytest.mark.asyncio
async def test_executor_exception_becomes_crash():
    async def broken(unit):
        if unit.key == "unit_01":
            raise FileNotFoundError("no such runner")
        return UnitOutcome(exit_code=1, stdout="assertion failed\n")

    results = await run_units(_units(3), 2, executor=broken)
    by_key = {r.unit.key: r for r in results}
    assert by_key["unit_01"].status is UnitStatus.CRASHED
    assert by_key["unit_01"].exit_code is None
    assert "no such runner" in by_key["unit_01"].error.reason
    assert by_key["unit_00"].status is UnitStatus.FAILED
    assert isinstance(by_key["unit_00"].error, UnitFailure)


@pytest.mark.asyncio
async def test_on_result_called_for_each_unit():
    seen = []
    pool = WorkerPool(2, executor=RecordingExecutor(), on_result=lambda r: seen.append(r.unit.key))
    await pool.run(_units(5))
    assert sorted(seen) == [f"unit_{i:02d}" for i in range(5)]


@pytest.mark.asyncio
async def test_concurrency_below_one_runs_serially():
    executor = RecordingExecutor()
    pool = WorkerPool(0, executor=executor)
    assert pool.concurrency == 1
    await pool.run(_units(3))
    assert executor.max_in_flight == 1


@pytest.mark.asyncio
async def test_empty_input():
    assert await run_units([], 4, executor=RecordingExecutor()) == []


@pytest.mark.parametrize(
    "code, status",
    [
        (0, UnitStatus.PASSED),
        (1, UnitStatus.FAILED),
        (2, UnitStatus.CRASHED),
        (-11, UnitStatus.CRASHED),
        (None, UnitStatus.CRASHED),
    ],
)
def test_classify_exit_code(code, status):
    assert classify_exit_code(code) is status


@pytest.mark.asyncio
async def test_summarize_tallies():
    executor = RecordingExecutor(exit_codes={"unit_00": 1, "unit_01": 139})
    summary = summarize(await run_units(_units(4), 4, executor=executor))
    assert (summary.passed, summary.failed, summary.crashed) == (2, 1, 1)
    assert summary.total == 4
    assert not summary.ok
    assert summary.elapsed_ms > 0
    assert summarize([]).ok


@pytest.mark.asyncio
@pytest.mark.subprocess
async def test_execute_unit_captures_output():
    unit = WorkUnit(
        key="t",
        command=(sys.executable, "-c", "import sys; print(sys.stdin.read().upper()); sys.exit(1)"),
        input=b"hello",
    )
    outcome = await execute_unit(unit)
    assert outcome.exit_code == 1
    assert outcome.stdout.strip() == "HELLO"
    assert outcome.crash_reason is None


@pytest.mark.asyncio
@pytest.mark.subprocess
async def test_execute_unit_timeout_is_crash():
    unit = WorkUnit(key="slow", command=(sys.executable, "-c", "import time; time.sleep(30)"), timeout=0.3)
    [result] = await run_units([unit], 1)
    assert result.status is UnitStatus.CRASHED
    assert "timed out" in result.error.reason


@pytest.mark.asyncio
@pytest.mark.subprocess
async def test_cancelling_run_kills_and_reaps_children(tmp_path):
    pid_file = tmp_path / "child.pid"
    script = "import os, sys, time; open(sys.argv[1], 'w').write(str(os.getpid())); time.sleep(30)"
    unit = WorkUnit(key="sleeper", command=(sys.executable, "-c", script, str(pid_file)))
    task = asyncio.create_task(run_units([unit], 1))

    async def _pid() -> int:
        while not (pid_file.exists() and pid_file.read_text()):
            await asyncio.sleep(0.01)
        return int(pid_file.read_text())

    pid = await asyncio.wait_for(_pid(), timeout=10.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
