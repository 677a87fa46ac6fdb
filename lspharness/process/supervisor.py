"""Lifecycle of a stdio peer process: spawn, stderr watch, exit watch, shutdown."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Sequence

from loguru import logger

from lspharness.rpc.session import DEFAULT_TIMEOUT_SECONDS, RpcSession
from lspharness.utils.exceptions import HarnessError, SessionAbortedError

DEFAULT_FATAL_MARKERS: tuple[str, ...] = ("RuntimeError:", "memory access out of bounds")
SHUTDOWN_CAUSE = "session closed by shutdown"

StderrObserver = Callable[[str], None]


class ProcessSupervisor:
    """Owns one child process and the RpcSession attached to its pipes.

    Any exit that was not requested through shutdown() and has a non-zero
    code aborts the session, as does a fatal marker on the peer's stderr, so
    no caller waits on a dead peer until its timeout.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        fatal_markers: Sequence[str] = DEFAULT_FATAL_MARKERS,
        stderr_observer: StderrObserver | None = None,
        shutdown_grace: float = 2.0,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        method_timeouts: dict[str, float] | None = None,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.command = [str(part) for part in command]
        self.cwd = cwd
        self.env = env
        self.fatal_markers = tuple(m for m in fatal_markers if m)
        self.stderr_observer = stderr_observer
        self.shutdown_grace = shutdown_grace
        self.default_timeout = default_timeout
        self.method_timeouts = method_timeouts
        self.last_stderr_line = ""
        self._proc: asyncio.subprocess.Process | None = None
        self._session: RpcSession | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._shutdown_requested = False
        self._closed = False

    @property
    def session(self) -> RpcSession:
        if self._session is None:
            raise RuntimeError("supervisor not started")
        return self._session

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> RpcSession:
        """Spawn the peer and return a started session bound to its pipes."""
        if self._session is not None:
            return self._session
        run_env = dict(os.environ)
        if self.env:
            run_env.update(self.env)
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=run_env,
        )
        if not self._proc.stdin or not self._proc.stdout or not self._proc.stderr:
            raise HarnessError("peer stdio is unavailable", code="PEER_START_FAILED")
        logger.info("Started peer (PID: {}): {}", self._proc.pid, " ".join(self.command))
        self._session = RpcSession(
            self._proc.stdout,
            self._proc.stdin,
            default_timeout=self.default_timeout,
            method_timeouts=self.method_timeouts,
            name=os.path.basename(self.command[0]),
        )
        self._session.start()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._stderr_loop()),
            loop.create_task(self._watch_exit()),
        ]
        return self._session

    async def __aenter__(self) -> RpcSession:
        return await self.start()

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # -- watchers ------------------------------------------------------

    async def _stderr_loop(self) -> None:
        if self._proc is None or self._proc.stderr is None:
            raise RuntimeError("stderr watcher started before the peer process")
        stream = self._proc.stderr
        partial = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            text = partial + chunk.decode("utf-8", errors="replace")
            *lines, partial = text.split("\n")
            for line in lines:
                self._observe_stderr(line.rstrip("\r"))
        if partial:
            self._observe_stderr(partial.rstrip("\r"))

    def _observe_stderr(self, line: str) -> None:
        if line.strip():
            self.last_stderr_line = line.strip()
            logger.debug("[peer] {}", line)
        if self.stderr_observer is not None:
            try:
                self.stderr_observer(line)
            except Exception:
                logger.exception("stderr observer failed")
        for marker in self.fatal_markers:
            if marker in line:
                if self._session is not None:
                    self._session.abort(f"fatal marker {marker!r} on peer stderr: {line.strip()}")
                break

    async def _watch_exit(self) -> None:
        if self._proc is None:
            raise RuntimeError("exit watcher started before the peer process")
        code = await self._proc.wait()
        logger.info("Peer (PID: {}) exited with code {}", self._proc.pid, code)
        if self._shutdown_requested or code == 0 or self._session is None:
            return
        if code < 0:
            self._session.abort(f"peer process killed by signal {-code}")
        else:
            self._session.abort(f"peer process exited with code {code}")

    # -- shutdown ------------------------------------------------------

    async def shutdown(self) -> int | None:
        """Graceful stop: shutdown request, exit notification, close stdin, then kill.

        Returns the process exit code.
        """
        if self._closed or self._proc is None:
            return self.returncode
        self._closed = True
        self._shutdown_requested = True
        proc = self._proc
        session = self._session
        if session is not None and not session.aborted and proc.returncode is None:
            try:
                await session.request("shutdown", None, timeout=self.shutdown_grace)
            except HarnessError as exc:
                logger.debug("shutdown request did not complete: {}", exc)
            try:
                await session.notify("exit", None)
            except SessionAbortedError as exc:
                logger.debug("exit notification not sent: {}", exc)
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning("Peer (PID: {}) did not exit gracefully, killing...", proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
        if session is not None:
            session.abort(SHUTDOWN_CAUSE)
            await session.close()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        return proc.returncode

    def describe(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "pid": self.pid,
            "returncode": self.returncode,
            "lastStderrLine": self.last_stderr_line,
            "abortCause": self._session.abort_cause if self._session else None,
        }
