"""Resident-memory sampling for a running peer (uses `ps`, POSIX only)."""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger


@dataclass(slots=True)
class MemorySample:
    rss_kb: int
    at_ms: float
    context: str = ""


async def read_rss_kb(pid: int) -> int | None:
    """Return the resident set size of ``pid`` in KiB, or None when unavailable."""
    if sys.platform == "win32":
        return None
    try:
        proc = await asyncio.create_subprocess_exec(
            "ps", "-o", "rss=", "-p", str(pid),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except (FileNotFoundError, OSError):
        return None
    if proc.returncode != 0:
        return None
    text = (stdout or b"").decode("utf-8", errors="replace").strip()
    return int(text) if text.isdigit() else None


class PeakMemoryMonitor:
    """Polls a process's RSS and keeps the peak sample.

    ``context`` is called on every sample so the peak can be tied to what the
    peer was doing (typically its last stderr line).
    """

    def __init__(
        self,
        pid: int,
        *,
        interval: float = 0.2,
        context: Callable[[], str] | None = None,
        sampler: Callable[[int], Awaitable[int | None]] = read_rss_kb,
    ):
        self.pid = pid
        self.interval = interval
        self.context = context
        self.sampler = sampler
        self.peak: MemorySample | None = None
        self.samples = 0
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._started = time.monotonic()

    def start(self) -> None:
        if self._task is None:
            self._started = time.monotonic()
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> MemorySample | None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        return self.peak

    async def _run(self) -> None:
        while not self._stop.is_set():
            rss = await self.sampler(self.pid)
            if rss is None:
                logger.debug("No RSS sample for PID {}; stopping monitor", self.pid)
                return
            self.samples += 1
            if self.peak is None or rss > self.peak.rss_kb:
                self.peak = MemorySample(
                    rss_kb=rss,
                    at_ms=(time.monotonic() - self._started) * 1000.0,
                    context=self.context() if self.context else "",
                )
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
