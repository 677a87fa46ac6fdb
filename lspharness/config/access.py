"""Cached configuration access, refreshed when the file on disk changes."""

from __future__ import annotations

import threading
from pathlib import Path

from lspharness.config.loader import get_config_path, load_config
from lspharness.config.schema import Config

_lock = threading.RLock()
_cache: dict[Path, tuple[float | None, Config]] = {}


def _resolve(config_path: Path | None) -> Path:
    return Path(config_path or get_config_path()).expanduser().resolve()


def _mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except OSError:
        return None


def get_config(*, config_path: Path | None = None, force_reload: bool = False) -> Config:
    """Return the config for ``config_path``, reloading if forced or the file changed."""
    path = _resolve(config_path)
    stamp = _mtime(path)
    with _lock:
        cached = _cache.get(path)
        if force_reload or cached is None or cached[0] != stamp:
            cached = (stamp, load_config(path))
            _cache[path] = cached
        return cached[1]


def clear_config_cache(*, config_path: Path | None = None) -> None:
    """Drop one cached entry, or all of them."""
    with _lock:
        if config_path is None:
            _cache.clear()
        else:
            _cache.pop(_resolve(config_path), None)
