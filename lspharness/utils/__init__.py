"""Utility functions for lspharness."""

from lspharness.utils.exceptions import (
    HarnessError,
    ErrorCategory,
    FramingError,
    PayloadParseError,
    RequestTimeoutError,
    SessionAbortedError,
    RpcResponseError,
    UnitFailure,
    UnitCrash,
    SettleBusyError,
)

__all__ = [
    "HarnessError",
    "ErrorCategory",
    "FramingError",
    "PayloadParseError",
    "RequestTimeoutError",
    "SessionAbortedError",
    "RpcResponseError",
    "UnitFailure",
    "UnitCrash",
    "SettleBusyError",
]
