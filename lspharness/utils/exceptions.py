"""
Exception hierarchy for lspharness.

Provides:
- A base error carrying a stable code and category
- Framing/payload errors that the codec recovers from locally
- Timeout and abort errors surfaced to RPC callers
- Unit outcome errors that the worker pool records as data
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    TIMEOUT = "timeout"
    FATAL = "fatal"
    REMOTE = "remote"
    VALIDATION = "validation"


class HarnessError(Exception):
    """Base exception for all lspharness errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class FramingError(HarnessError):
    """Frame header without a usable Content-Length."""

    def __init__(self, header: bytes):
        preview = header[:120].decode("utf-8", errors="replace")
        super().__init__(
            f"malformed frame header: {preview!r}",
            code="FRAMING_ERROR",
            category=ErrorCategory.RECOVERABLE,
            details={"header": preview},
        )


class PayloadParseError(HarnessError):
    """Frame body that is not a JSON object."""

    def __init__(self, reason: str, size: int):
        super().__init__(
            f"dropped frame body ({size} bytes): {reason}",
            code="PAYLOAD_PARSE_ERROR",
            category=ErrorCategory.RECOVERABLE,
            details={"reason": reason, "size": size},
        )


class RequestTimeoutError(HarnessError):
    """No response arrived for a request within its deadline."""

    def __init__(self, method: str, timeout_seconds: float):
        super().__init__(
            f"timeout waiting for {method} after {timeout_seconds}s",
            code="TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"method": method, "timeout_seconds": timeout_seconds},
        )
        self.method = method
        self.timeout_seconds = timeout_seconds


class SessionAbortedError(HarnessError):
    """The session is terminal; every pending and future call fails with this."""

    def __init__(self, cause: str):
        super().__init__(
            cause,
            code="SESSION_ABORTED",
            category=ErrorCategory.FATAL,
            details={"cause": cause},
        )
        self.cause = cause


class RpcResponseError(HarnessError):
    """The peer answered a request with an error object."""

    def __init__(self, method: str, code: int, message: str, data: Any = None):
        super().__init__(
            f"{method} failed: {message} (code {code})",
            code="RPC_ERROR",
            category=ErrorCategory.REMOTE,
            details={"method": method, "rpc_code": code, "data": data},
        )
        self.method = method
        self.rpc_code = code
        self.rpc_message = message
        self.data = data


class UnitFailure(HarnessError):
    """A work unit exited with the expected-failure code."""

    def __init__(self, key: str, exit_code: int):
        super().__init__(
            f"{key} failed (exit {exit_code})",
            code="UNIT_FAILED",
            category=ErrorCategory.RECOVERABLE,
            details={"key": key, "exit_code": exit_code},
        )
        self.key = key
        self.exit_code = exit_code


class UnitCrash(HarnessError):
    """A work unit exited abnormally, was killed, or never started."""

    def __init__(self, key: str, exit_code: int | None, reason: str):
        super().__init__(
            f"{key} crashed: {reason}",
            code="UNIT_CRASHED",
            category=ErrorCategory.FATAL,
            details={"key": key, "exit_code": exit_code, "reason": reason},
        )
        self.key = key
        self.exit_code = exit_code
        self.reason = reason


class SettleBusyError(HarnessError):
    """A settle window is already waiting on this monitor."""

    def __init__(self, active_label: str):
        super().__init__(
            f"settle window '{active_label}' is still waiting",
            code="SETTLE_BUSY",
            category=ErrorCategory.VALIDATION,
            details={"active_label": active_label},
        )
