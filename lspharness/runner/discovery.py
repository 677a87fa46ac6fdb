"""Find test files and turn them into work units."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Sequence

from lspharness.runner.pool import WorkUnit

DEFAULT_TEST_SUFFIXES: tuple[str, ...] = ("_test.gr", ".test.gr")


def is_test_file(name: str, suffixes: Sequence[str] = DEFAULT_TEST_SUFFIXES) -> bool:
    return any(name.endswith(suffix) for suffix in suffixes)


def discover_files(
    paths: Iterable[str | Path],
    suffixes: Sequence[str] = DEFAULT_TEST_SUFFIXES,
) -> list[str]:
    """Walk files and directories, returning matching files sorted.

    Missing paths are skipped silently.
    """
    found: set[str] = set()
    for raw in paths:
        path = Path(raw)
        if path.is_file():
            if is_test_file(path.name, suffixes):
                found.add(path.as_posix())
            continue
        if not path.is_dir():
            continue
        for root, dirs, files in os.walk(path):
            dirs.sort()
            for name in files:
                if is_test_file(name, suffixes):
                    found.add((Path(root) / name).as_posix())
    return sorted(found)


def build_units(
    files: Iterable[str],
    command: Sequence[str],
    *,
    name_filter: str | None = None,
    timeout: float | None = None,
    cwd: str | None = None,
) -> list[WorkUnit]:
    """One unit per file: ``command + [file]``, keyed by the file path."""
    if not command:
        raise ValueError("command must not be empty")
    units = []
    for file in files:
        if name_filter and name_filter not in file:
            continue
        units.append(WorkUnit(key=file, command=(*command, file), cwd=cwd, timeout=timeout))
    return units
