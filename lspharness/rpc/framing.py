"""Content-Length framing for JSON-RPC over stdio.

Each frame is ``Content-Length: <n>\\r\\n\\r\\n<body>`` where ``n`` is the byte
length of the UTF-8 JSON body. Decoding is incremental: callers keep the
returned remainder and prepend it to the next read.
"""

from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger

from lspharness.utils.exceptions import FramingError, HarnessError, PayloadParseError

HEADER_DELIMITER = b"\r\n\r\n"
_CONTENT_LENGTH_RE = re.compile(rb"Content-Length:\s*(\d+)", re.IGNORECASE)


def encode_frame(payload: dict[str, Any]) -> bytes:
    """Encode one message body with its Content-Length header."""
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return b"Content-Length: " + str(len(body)).encode("ascii") + HEADER_DELIMITER + body


def _content_length(header: bytes) -> int:
    match = _CONTENT_LENGTH_RE.search(header)
    if not match:
        raise FramingError(header)
    return int(match.group(1))


def _parse_body(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadParseError(str(exc), len(body)) from exc
    if not isinstance(payload, dict):
        raise PayloadParseError(f"expected object, got {type(payload).__name__}", len(body))
    return payload


def decode_frames(
    buffer: bytes,
    errors: list[HarnessError] | None = None,
) -> tuple[list[dict[str, Any]], bytes]:
    """Split every complete frame off the front of ``buffer``.

    Returns the decoded bodies in order and the unconsumed remainder. An
    incomplete header or body leaves the remainder untouched. Malformed
    headers are skipped and undecodable bodies dropped; both are appended to
    ``errors`` when given and never raised.
    """
    messages: list[dict[str, Any]] = []
    pos = 0
    while True:
        header_end = buffer.find(HEADER_DELIMITER, pos)
        if header_end < 0:
            break
        body_start = header_end + len(HEADER_DELIMITER)
        try:
            length = _content_length(buffer[pos:header_end])
        except FramingError as exc:
            logger.debug("Skipping frame header: {}", exc.message)
            if errors is not None:
                errors.append(exc)
            pos = body_start
            continue
        body_end = body_start + length
        if len(buffer) < body_end:
            break
        body = buffer[body_start:body_end]
        pos = body_end
        try:
            messages.append(_parse_body(body))
        except PayloadParseError as exc:
            logger.debug("Dropping frame: {}", exc.message)
            if errors is not None:
                errors.append(exc)
    if pos == 0:
        return messages, buffer
    return messages, buffer[pos:]


class FrameDecoder:
    """Receive buffer for one stream, fed chunk by chunk."""

    def __init__(self) -> None:
        self._buffer = b""
        self.framing_errors = 0
        self.parse_errors = 0

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        errors: list[HarnessError] = []
        messages, self._buffer = decode_frames(self._buffer + chunk, errors)
        for err in errors:
            if isinstance(err, FramingError):
                self.framing_errors += 1
            else:
                self.parse_errors += 1
        return messages
