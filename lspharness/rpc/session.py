"""RPC session over a peer's stdio streams (Content-Length framed JSON-RPC)."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from lspharness.rpc.framing import FrameDecoder, encode_frame
from lspharness.rpc.protocol import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    RpcError,
    RpcNotification,
    RpcRequest,
    RpcResponse,
    parse_message,
)
from lspharness.utils.exceptions import (
    RequestTimeoutError,
    RpcResponseError,
    SessionAbortedError,
)

NotificationHandler = Callable[[str, Any], None]
RequestHandler = Callable[[str, Any], Any | Awaitable[Any]]

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_METHOD_TIMEOUTS: dict[str, float] = {"initialize": 45.0}
_READ_CHUNK = 65536


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteWriter(Protocol):
    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...
    def close(self) -> None: ...


@dataclass(slots=True)
class PendingOperation:
    """A request waiting for its response; lives only in one session's table."""

    id: int
    method: str
    created_at: float
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = field(default=None)


class RpcSession:
    """Request/response correlation, notification dispatch and abort for one peer.

    A single read task decodes frames and dispatches them; writes from any
    number of callers go through one lock so frames never interleave. Each
    pending entry reaches exactly one terminal state (response, timeout or
    abort): whichever path pops it from the table first wins.
    """

    def __init__(
        self,
        reader: ByteReader,
        writer: ByteWriter,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        method_timeouts: dict[str, float] | None = None,
        name: str = "peer",
    ):
        self.name = name
        self.default_timeout = default_timeout
        self.method_timeouts = dict(DEFAULT_METHOD_TIMEOUTS if method_timeouts is None else method_timeouts)
        self.decoder = FrameDecoder()
        self._reader = reader
        self._writer = writer
        self._next_id = 1
        self._pending: dict[int, PendingOperation] = {}
        self._abort_error: SessionAbortedError | None = None
        self._write_lock = asyncio.Lock()
        self._read_task: asyncio.Task[None] | None = None
        self._reply_tasks: set[asyncio.Task[None]] = set()
        self._on_notification: NotificationHandler | None = None
        self._on_request: RequestHandler | None = None

    # -- state ---------------------------------------------------------

    @property
    def aborted(self) -> bool:
        return self._abort_error is not None

    @property
    def abort_cause(self) -> str | None:
        return self._abort_error.cause if self._abort_error else None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def timeout_for(self, method: str) -> float:
        return self.method_timeouts.get(method, self.default_timeout)

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        """Start the read loop (idempotent)."""
        if self._read_task is None:
            self._read_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def close(self) -> None:
        """Stop reading. Pending operations are left to the abort path."""
        tasks = [t for t in (self._read_task, *self._reply_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._read_task = None

    async def __aenter__(self) -> "RpcSession":
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.abort("session closed")
        await self.close()

    def abort(self, cause: str | BaseException) -> bool:
        """Make the session terminal and fail every pending operation.

        Only the first call applies; later calls return False.
        """
        if self._abort_error is not None:
            return False
        if isinstance(cause, SessionAbortedError):
            error = cause
        elif isinstance(cause, BaseException):
            error = SessionAbortedError(str(cause) or type(cause).__name__)
        else:
            error = SessionAbortedError(cause)
        self._abort_error = error
        pending = list(self._pending.values())
        self._pending.clear()
        for op in pending:
            if op.timer is not None:
                op.timer.cancel()
            if not op.future.done():
                op.future.set_exception(error)
        logger.warning("RPC session {} aborted ({} pending): {}", self.name, len(pending), error.cause)
        return True

    # -- handlers ------------------------------------------------------

    def on_notification(self, handler: NotificationHandler | None) -> None:
        """Install the single notification handler; replaces any previous one."""
        self._on_notification = handler

    def on_request(self, handler: RequestHandler | None) -> None:
        """Install the handler answering requests sent by the peer."""
        self._on_request = handler

    # -- outbound ------------------------------------------------------

    async def request(self, method: str, params: Any = None, timeout: float | None = None) -> Any:
        """Send a request and wait for its result, a timeout, or an abort.

        The timer starts before the write, so a peer that stops reading its
        stdin still yields RequestTimeoutError. The table entry is removed on
        every exit path, including a failed write and caller cancellation.
        """
        if self._abort_error is not None:
            raise self._abort_error
        loop = asyncio.get_running_loop()
        req_id = self._next_id
        self._next_id += 1
        limit = self.timeout_for(method) if timeout is None else timeout
        op = PendingOperation(id=req_id, method=method, created_at=loop.time(), future=loop.create_future())
        self._pending[req_id] = op
        op.timer = loop.call_later(limit, self._expire, op, limit)
        writing = loop.create_task(self._write(RpcRequest(id=req_id, method=method, params=params).to_payload()))
        try:
            done, _ = await asyncio.wait({writing, op.future}, return_when=asyncio.FIRST_COMPLETED)
            if writing in done:
                writing.result()
            return await op.future
        finally:
            if not writing.done():
                writing.cancel()
            elif not writing.cancelled():
                writing.exception()
            if self._pending.get(req_id) is op:
                del self._pending[req_id]
            op.timer.cancel()
            if op.future.done() and not op.future.cancelled():
                op.future.exception()

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a notification; never waits for an acknowledgement."""
        if self._abort_error is not None:
            raise self._abort_error
        await self._write(RpcNotification(method=method, params=params).to_payload())

    async def _write(self, payload: dict[str, Any]) -> None:
        frame = encode_frame(payload)
        async with self._write_lock:
            if self._abort_error is not None:
                raise self._abort_error
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except (ConnectionError, OSError, RuntimeError) as exc:
                cause = f"write to {self.name} failed: {exc}"
                self.abort(cause)
                raise (self._abort_error or SessionAbortedError(cause)) from exc

    # -- terminal transitions -----------------------------------------

    def _expire(self, op: PendingOperation, limit: float) -> None:
        if self._pending.get(op.id) is not op:
            return
        del self._pending[op.id]
        if not op.future.done():
            op.future.set_exception(RequestTimeoutError(op.method, limit))

    def _resolve(self, response: RpcResponse) -> None:
        op = self._pending.pop(response.id, None) if isinstance(response.id, int) else None
        if op is None:
            logger.debug("Dropping response for unknown or expired id {}", response.id)
            return
        if op.timer is not None:
            op.timer.cancel()
        if op.future.done():
            return
        if response.error is not None:
            err = response.error
            op.future.set_exception(RpcResponseError(op.method, err.code, err.message, err.data))
        else:
            op.future.set_result(response.result)

    # -- inbound -------------------------------------------------------

    async def _read_loop(self) -> None:
        while True:
            try:
                chunk = await self._reader.read(_READ_CHUNK)
            except Exception as exc:
                self.abort(f"read from {self.name} failed: {exc}")
                return
            if not chunk:
                logger.debug("{} closed its output stream", self.name)
                return
            for payload in self.decoder.feed(chunk):
                self._dispatch(payload)

    def _dispatch(self, payload: dict[str, Any]) -> None:
        message = parse_message(payload)
        if isinstance(message, RpcResponse):
            self._resolve(message)
        elif isinstance(message, RpcNotification):
            handler = self._on_notification
            if handler is None:
                return
            try:
                handler(message.method, message.params)
            except Exception:
                logger.exception("Notification handler failed for {}", message.method)
        elif isinstance(message, RpcRequest):
            task = asyncio.get_running_loop().create_task(self._answer(message))
            self._reply_tasks.add(task)
            task.add_done_callback(self._reply_tasks.discard)

    async def _answer(self, request: RpcRequest) -> None:
        handler = self._on_request
        if handler is None:
            response = RpcResponse(
                id=request.id,
                error=RpcError(code=METHOD_NOT_FOUND, message=f"method not found: {request.method}"),
            )
        else:
            try:
                result = handler(request.method, request.params)
                if inspect.isawaitable(result):
                    result = await result
                response = RpcResponse(id=request.id, result=result)
            except Exception as exc:
                logger.warning("Request handler failed for {}: {}", request.method, exc)
                response = RpcResponse(id=request.id, error=RpcError(code=INTERNAL_ERROR, message=str(exc)))
        try:
            await self._write(response.to_payload())
        except SessionAbortedError:
            logger.debug("Not answering {}: session aborted", request.method)
