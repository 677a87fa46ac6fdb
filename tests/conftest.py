"""Pytest hooks and fixtures."""

import asyncio
import os
import sys
from pathlib import Path

import pytest

from lspharness.rpc.framing import FrameDecoder, encode_frame

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_lsp_server.py"


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "subprocess: spawns real child processes (skipped when NO_SUBPROCESS=1)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip subprocess tests in sandboxes that forbid spawning."""
    if os.environ.get("NO_SUBPROCESS") != "1":
        return
    skip = pytest.mark.skip(reason="Spawning child processes disabled (NO_SUBPROCESS=1)")
    for item in items:
        if "subprocess" in item.keywords:
            item.add_marker(skip)


class MemoryWriter:
    """Session-side writer; decodes what the session sends so the test can act as the peer."""

    def __init__(self):
        self.decoder = FrameDecoder()
        self.received: list[dict] = []
        self.raw = bytearray()
        self.fail_with: Exception | None = None
        self.closed = False
        self._arrived = asyncio.Event()

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.raw.extend(data)
        self.received.extend(self.decoder.feed(data))
        self._arrived.set()

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    async def wait_for_messages(self, count: int, timeout: float = 2.0) -> list[dict]:
        async def _wait():
            while len(self.received) < count:
                self._arrived.clear()
                await self._arrived.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)
        return self.received[:count]


class MemoryPeer:
    """The far end of an in-memory session: feeds frames in, collects frames out."""

    def __init__(self):
        self.reader = asyncio.StreamReader()
        self.writer = MemoryWriter()

    def send(self, payload: dict) -> None:
        self.reader.feed_data(encode_frame(payload))

    def send_raw(self, data: bytes) -> None:
        self.reader.feed_data(data)

    def respond(self, request: dict, result=None) -> None:
        self.send({"jsonrpc": "2.0", "id": request["id"], "result": result})

    def close(self) -> None:
        self.reader.feed_eof()


@pytest.fixture
def make_peer():
    """Factory for MemoryPeer; call it inside the running event loop."""
    return MemoryPeer


@pytest.fixture
def fake_server_command():
    """argv for a small stdio language server written for these tests."""
    return [sys.executable, str(FAKE_SERVER)]
