"""Tests for ProcessSupervisor against a real child process."""

import asyncio
import sys

import pytest

from lspharness.process.supervisor import SHUTDOWN_CAUSE, ProcessSupervisor
from lspharness.utils.exceptions import RequestTimeoutError, SessionAbortedError

pytestmark = pytest.mark.subprocess


@pytest.mark.asyncio
async def test_initialize_and_graceful_shutdown(fake_server_command):
    supervisor = ProcessSupervisor(fake_server_command)
    session = await supervisor.start()
    assert supervisor.running
    result = await session.request("initialize", {"capabilities": {}})
    assert result["serverInfo"]["name"] == "fake-lsp"
    assert await session.request("echo", {"value": 3}) == {"value": 3}

    code = await supervisor.shutdown()
    assert code == 0
    assert session.abort_cause == SHUTDOWN_CAUSE
    with pytest.raises(SessionAbortedError):
        await session.request("echo")
    assert await supervisor.shutdown() == 0


@pytest.mark.asyncio
async def test_notifications_arrive_before_response(fake_server_command):
    async with ProcessSupervisor(fake_server_command) as session:
        seen = []
        session.on_notification(lambda method, params: seen.append(params["seq"]))
        await session.request("notify_me", {"count": 5})
        assert seen == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_slow_peer_times_out_and_late_reply_is_dropped(fake_server_command):
    async with ProcessSupervisor(fake_server_command) as session:
        with pytest.raises(RequestTimeoutError):
            await session.request("slow", {"delay": 0.5}, timeout=0.1)
        # The late "done" reply arrives before this echo and must not resolve it.
        assert await session.request("echo", {"after": True}) == {"after": True}
        assert session.pending_count == 0
        assert not session.aborted


@pytest.mark.asyncio
async def test_nonzero_exit_aborts_pending_request(fake_server_command):
    supervisor = ProcessSupervisor(fake_server_command)
    session = await supervisor.start()
    with pytest.raises(SessionAbortedError) as exc_info:
        await session.request("crash", timeout=10)
    assert "exited with code 3" in exc_info.value.cause
    assert session.pending_count == 0
    await supervisor.shutdown()
    assert supervisor.returncode == 3
    assert supervisor.describe()["lastStderrLine"] == "about to crash"


@pytest.mark.asyncio
async def test_fatal_stderr_marker_aborts(fake_server_command):
    lines = []
    supervisor = ProcessSupervisor(fake_server_command, stderr_observer=lines.append)
    session = await supervisor.start()
    with pytest.raises(SessionAbortedError) as exc_info:
        await session.request("fatal", timeout=10)
    assert "RuntimeError:" in exc_info.value.cause
    assert "RuntimeError: unreachable" in lines
    assert supervisor.running
    await supervisor.shutdown()
    assert not supervisor.running


@pytest.mark.asyncio
async def test_unresponsive_peer_is_killed():
    supervisor = ProcessSupervisor(
        [sys.executable, "-c", "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); time.sleep(30)"],
        shutdown_grace=0.2,
    )
    await supervisor.start()
    loop = asyncio.get_running_loop()
    started = loop.time()
    code = await supervisor.shutdown()
    assert code is not None and code != 0
    assert loop.time() - started < 5
    assert supervisor.session.abort_cause == SHUTDOWN_CAUSE


@pytest.mark.asyncio
async def test_extra_env_reaches_child():
    supervisor = ProcessSupervisor(
        [sys.executable, "-c", "import os, sys; sys.stderr.write(os.environ['HARNESS_FLAG'] + '\\n')"],
        env={"HARNESS_FLAG": "on"},
    )
    await supervisor.start()
    await asyncio.wait_for(supervisor._proc.wait(), timeout=10)
    await supervisor.shutdown()
    assert supervisor.last_stderr_line == "on"


def test_empty_command_rejected():
    with pytest.raises(ValueError):
        ProcessSupervisor([])
