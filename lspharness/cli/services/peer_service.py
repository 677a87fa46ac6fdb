"""Language-server workflows built on the supervisor, session and settle monitor."""

from __future__ import annotations

import os
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from lspharness.config.schema import Config
from lspharness.process.memory import MemorySample, PeakMemoryMonitor
from lspharness.process.supervisor import ProcessSupervisor
from lspharness.rpc.session import RpcSession
from lspharness.settle.tracker import SettleMonitor, SettleSummary
from lspharness.utils.exceptions import HarnessError


@dataclass(slots=True)
class ProbeReport:
    ok: bool
    initialize_ms: float | None = None
    capabilities: list[str] = field(default_factory=list)
    server_info: dict[str, Any] | None = None
    error: str | None = None
    peer: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class FormatReport:
    ok: bool
    edits: list[dict[str, Any]] = field(default_factory=list)
    text: str | None = None
    error: str | None = None


@dataclass(slots=True)
class SettleRun:
    summaries: list[SettleSummary] = field(default_factory=list)
    peak_memory: MemorySample | None = None
    error: str | None = None


def diagnostic_count(params: Any) -> int:
    """Number of diagnostics in a publishDiagnostics payload."""
    diagnostics = params.get("diagnostics") if isinstance(params, dict) else None
    return len(diagnostics) if isinstance(diagnostics, list) else 0


def position_to_offset(text: str, line: int, character: int) -> int:
    """String index of an LSP position; ``character`` counts UTF-16 code units.

    Positions past the end of a line clamp to the line end, and lines past
    the end of the text clamp to its length.
    """
    offset = 0
    for _ in range(line):
        newline = text.find("\n", offset)
        if newline == -1:
            return len(text)
        offset = newline + 1
    units = 0
    while offset < len(text) and units < character and text[offset] != "\n":
        units += 2 if ord(text[offset]) > 0xFFFF else 1
        offset += 1
    return offset


def apply_text_edits(text: str, edits: list[dict[str, Any]]) -> str:
    """Apply TextEdits whose ranges all refer to the original ``text``."""
    spans = []
    for edit in edits:
        start, end = edit["range"]["start"], edit["range"]["end"]
        spans.append((
            position_to_offset(text, start["line"], start["character"]),
            position_to_offset(text, end["line"], end["character"]),
            edit.get("newText", ""),
        ))
    # Back to front, so earlier offsets stay valid.
    for start, end, new_text in sorted(spans, key=lambda span: span[0], reverse=True):
        text = text[:start] + new_text + text[end:]
    return text


class PeerService:
    """Launches the configured peer and runs one workflow against it."""

    def __init__(self, config: Config, stderr_observer: Callable[[str], None] | None = None):
        self.config = config
        self.stderr_observer = stderr_observer

    def resolve_command(self, server: str | None) -> list[str]:
        command = shlex.split(server) if server else list(self.config.server.command)
        if not command:
            raise HarnessError(
                "no server command: pass --server or set server.command in the config",
                code="NO_SERVER_COMMAND",
            )
        return command

    def build_supervisor(self, server: str | None = None) -> ProcessSupervisor:
        server_cfg = self.config.server
        return ProcessSupervisor(
            self.resolve_command(server),
            cwd=server_cfg.cwd,
            env=server_cfg.env or None,
            fatal_markers=server_cfg.fatal_markers,
            stderr_observer=self.stderr_observer,
            shutdown_grace=server_cfg.shutdown_grace_seconds,
            default_timeout=self.config.session.default_timeout,
            method_timeouts=self.config.session.method_timeouts,
        )

    async def _initialize(self, session: RpcSession) -> Any:
        result = await session.request(
            "initialize",
            {"processId": os.getpid(), "rootUri": Path.cwd().as_uri(), "capabilities": {}},
        )
        await session.notify("initialized", {})
        return result

    async def probe(self, server: str | None = None) -> ProbeReport:
        """Handshake, then shut down; reports timing and advertised capabilities."""
        supervisor = self.build_supervisor(server)
        session = await supervisor.start()
        report = ProbeReport(ok=False)
        try:
            started = time.monotonic()
            result = await self._initialize(session)
            report.initialize_ms = (time.monotonic() - started) * 1000.0
            row = result if isinstance(result, dict) else {}
            capabilities = row.get("capabilities")
            report.capabilities = sorted(capabilities) if isinstance(capabilities, dict) else []
            server_info = row.get("serverInfo")
            report.server_info = server_info if isinstance(server_info, dict) else None
            report.ok = True
        except HarnessError as exc:
            report.error = str(exc)
        finally:
            await supervisor.shutdown()
            report.peer = supervisor.describe()
        return report

    async def settle_edits(
        self,
        file_path: Path,
        edits: list[tuple[str, str]],
        *,
        server: str | None = None,
        language_id: str = "plaintext",
        track_memory: bool = False,
    ) -> SettleRun:
        """Open ``file_path`` and apply each edit as a full-text change.

        One settle summary is produced for the open and one per edit, each
        counting the notifications that concern this document.
        """
        settle_cfg = self.config.settle
        uri = file_path.resolve().as_uri()
        supervisor = self.build_supervisor(server)
        session = await supervisor.start()
        run = SettleRun()
        memory: PeakMemoryMonitor | None = None
        if track_memory and supervisor.pid is not None:
            memory = PeakMemoryMonitor(supervisor.pid, context=lambda: supervisor.last_stderr_line)
            memory.start()
        monitor = SettleMonitor(
            session,
            method=settle_cfg.notification_method,
            quiet_period=settle_cfg.quiet_period_ms / 1000.0,
            hard_deadline=settle_cfg.hard_deadline_ms / 1000.0,
            first_event_timeout=(
                None if settle_cfg.first_event_timeout_ms is None else settle_cfg.first_event_timeout_ms / 1000.0
            ),
            subject=lambda params: isinstance(params, dict) and params.get("uri") == uri,
            snapshot=diagnostic_count,
        )
        try:
            await self._initialize(session)
            text = file_path.read_text(encoding="utf-8")
            run.summaries.append(
                await monitor.measure(
                    lambda: session.notify(
                        "textDocument/didOpen",
                        {"textDocument": {"uri": uri, "languageId": language_id, "version": 1, "text": text}},
                    ),
                    label="open",
                )
            )
            for version, (label, new_text) in enumerate(edits, start=2):
                run.summaries.append(
                    await monitor.measure(
                        lambda v=version, t=new_text: session.notify(
                            "textDocument/didChange",
                            {"textDocument": {"uri": uri, "version": v}, "contentChanges": [{"text": t}]},
                        ),
                        label=label,
                    )
                )
        except HarnessError as exc:
            run.error = str(exc)
        finally:
            monitor.detach()
            if memory is not None:
                run.peak_memory = await memory.stop()
            await supervisor.shutdown()
        return run

    async def format_document(
        self,
        file_path: Path,
        *,
        server: str | None = None,
        language_id: str = "plaintext",
        tab_size: int = 2,
        insert_spaces: bool = True,
    ) -> FormatReport:
        """Open ``file_path``, request whole-document formatting and apply the edits locally."""
        uri = file_path.resolve().as_uri()
        text = file_path.read_text(encoding="utf-8")
        supervisor = self.build_supervisor(server)
        session = await supervisor.start()
        report = FormatReport(ok=False)
        try:
            await self._initialize(session)
            await session.notify(
                "textDocument/didOpen",
                {"textDocument": {"uri": uri, "languageId": language_id, "version": 1, "text": text}},
            )
            result = await session.request(
                "textDocument/formatting",
                {"textDocument": {"uri": uri}, "options": {"tabSize": tab_size, "insertSpaces": insert_spaces}},
            )
            report.edits = result if isinstance(result, list) else []
            report.text = apply_text_edits(text, report.edits)
            report.ok = True
        except HarnessError as exc:
            report.error = str(exc)
        except (KeyError, TypeError) as exc:
            report.error = f"malformed formatting edit: {exc!r}"
        finally:
            await supervisor.shutdown()
        return report
