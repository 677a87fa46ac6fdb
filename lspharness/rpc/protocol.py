"""JSON-RPC 2.0 message models exchanged with a stdio peer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

JSONRPC_VERSION = "2.0"
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


@dataclass(slots=True)
class RpcError:
    """Error object carried by a failed response."""

    code: int
    message: str
    data: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(slots=True)
class RpcRequest:
    """Request frame; expects exactly one response with the same id."""

    id: int | str
    method: str
    params: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass(slots=True)
class RpcNotification:
    """Fire-and-forget frame without an id."""

    method: str
    params: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass(slots=True)
class RpcResponse:
    """Response frame matched to a request purely by id."""

    id: int | str
    result: Any = None
    error: RpcError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.to_payload()
        else:
            payload["result"] = self.result
        return payload


Message = RpcRequest | RpcNotification | RpcResponse


def _is_int_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def normalize_rpc_error(error: Any) -> RpcError:
    """Normalize unknown error payloads into RpcError."""
    row = error if isinstance(error, dict) else {}
    code = row.get("code")
    return RpcError(
        code=code if _is_int_id(code) else INTERNAL_ERROR,
        message=str(row.get("message") or "rpc failed"),
        data=row.get("data"),
    )


def parse_message(payload: dict[str, Any]) -> Message | None:
    """Classify a decoded frame body.

    `method` with an id is a request from the peer, `method` alone is a
    notification, and an integer id without `method` is a response. Anything
    else is dropped.
    """
    method = payload.get("method")
    msg_id = payload.get("id")
    if isinstance(method, str):
        if msg_id is None:
            return RpcNotification(method=method, params=payload.get("params"))
        return RpcRequest(id=msg_id, method=method, params=payload.get("params"))
    if _is_int_id(msg_id):
        if "error" in payload and payload["error"] is not None:
            return RpcResponse(id=msg_id, error=normalize_rpc_error(payload["error"]))
        return RpcResponse(id=msg_id, result=payload.get("result"))
    logger.warning("Dropping unclassifiable message: {}", str(payload)[:200])
    return None
