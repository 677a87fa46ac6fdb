"""Framed JSON-RPC client core."""

from .framing import FrameDecoder, decode_frames, encode_frame
from .protocol import RpcError, RpcNotification, RpcRequest, RpcResponse, parse_message
from .session import PendingOperation, RpcSession

__all__ = [
    "FrameDecoder",
    "decode_frames",
    "encode_frame",
    "RpcError",
    "RpcNotification",
    "RpcRequest",
    "RpcResponse",
    "parse_message",
    "PendingOperation",
    "RpcSession",
]
