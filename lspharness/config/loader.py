"""Read and write the JSON config file (camelCase on disk, snake_case in the models)."""

import json
import re
import shlex
from pathlib import Path
from typing import Any, Callable

from lspharness.config.schema import Config

# Children of these keys are user data (env var names, method names) and keep their spelling.
_VERBATIM_KEYS = frozenset({"env", "method_timeouts", "methodTimeouts"})
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    return Path.home() / ".lspharness" / "config.json"


def get_data_dir() -> Path:
    """~/.lspharness, created on first use; rotating logs live under it."""
    path = Path.home() / ".lspharness"
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(config_path: Path | None = None) -> Config:
    """
    Build a Config from ``config_path`` (default ~/.lspharness/config.json).

    LSPHARNESS_SECTION__FIELD environment variables apply on top of the
    defaults; values present in the file win over both. A missing file is
    not an error.

    Raises:
        ValueError: the file is not valid JSON, not an object, or fails validation.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        return Config(**_migrate(convert_keys(data)))
    except ValueError as e:
        # JSONDecodeError and pydantic's ValidationError are both ValueErrors.
        raise ValueError(
            f"Failed to load config from {path}: {e}. "
            "Fix the file or remove it to use the defaults."
        ) from e


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write ``config`` as camelCase JSON and drop any cached copy of that file."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")

    from lspharness.config.access import clear_config_cache

    clear_config_cache(config_path=path)


def _migrate(data: dict[str, Any]) -> dict[str, Any]:
    """Accept a shell-style string wherever an argv list is expected."""
    for section in ("server", "pool"):
        block = data.get(section)
        if isinstance(block, dict) and isinstance(block.get("command"), str):
            block["command"] = shlex.split(block["command"])
    return data


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    return {
        rename(k): (dict(v) if k in _VERBATIM_KEYS and isinstance(v, dict) else _rename_keys(v, rename))
        for k, v in data.items()
    }


def convert_keys(data: Any) -> Any:
    """camelCase -> snake_case, recursively."""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case -> camelCase, recursively."""
    return _rename_keys(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
