"""Tests for peak RSS tracking."""

import os
import sys

import pytest

from lspharness.process.memory import PeakMemoryMonitor, read_rss_kb


@pytest.mark.asyncio
async def test_monitor_keeps_peak_and_context():
    readings = iter([100, 250, 180, None])
    contexts = iter(["boot", "indexing", "idle"])

    async def sampler(pid):
        return next(readings)

    monitor = PeakMemoryMonitor(1234, interval=0.001, sampler=sampler, context=lambda: next(contexts))
    monitor.start()
    await monitor._task
    peak = await monitor.stop()
    assert monitor.samples == 3
    assert peak.rss_kb == 250
    assert peak.context == "indexing"


@pytest.mark.asyncio
async def test_stop_ends_sampling():
    async def sampler(pid):
        return 42

    monitor = PeakMemoryMonitor(1, interval=10, sampler=sampler)
    monitor.start()
    peak = await monitor.stop()
    assert peak is None or peak.rss_kb == 42


@pytest.mark.asyncio
@pytest.mark.subprocess
@pytest.mark.skipif(sys.platform == "win32", reason="ps is POSIX only")
async def test_read_rss_of_current_process():
    rss = await read_rss_kb(os.getpid())
    assert rss is None or rss > 0
