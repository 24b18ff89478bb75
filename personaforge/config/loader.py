"""Read and write ``~/.personaforge/config.json``.

The file is camelCase on disk; the schema is snake_case. A missing or
unreadable file never stops the process: the loader logs and falls back to
defaults.
"""

import json
import os
import re
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from personaforge.config.defaults import apply_missing_defaults
from personaforge.config.schema import Config

# Sections whose keys are user-chosen names rather than schema fields.
_VERBATIM_KEY_SECTIONS = frozenset({"personas"})

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    from personaforge.utils.helpers import get_data_path

    return get_data_path() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """Load the config file at ``config_path`` (default location if omitted).

    Sections missing from the file are filled from ``DEFAULT_*`` before
    validation, so a partial file keeps working across upgrades.
    """
    path = config_path or get_config_path()
    if not path.exists():
        logger.debug("config_missing path={} using=defaults", path)
        return Config()

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("top-level value must be an object")
        sections = convert_keys(payload)
        apply_missing_defaults(sections)
        return Config.model_validate(sections)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("config_invalid path={} error={} using=defaults", path, e)
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write ``config`` as camelCase JSON, replacing the file atomically (mode 0600)."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(convert_to_camel(config.model_dump()), indent=2, ensure_ascii=False)

    staging = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    staging.write_text(body + "\n", encoding="utf-8")
    try:
        staging.chmod(0o600)
    except OSError as e:
        logger.debug("config_chmod_failed path={} error={}", staging, e)
    os.replace(staging, path)
    logger.info("config_saved path={}", path)


def convert_keys(data: Any, *, _parent: str | None = None) -> Any:
    """camelCase keys to snake_case, leaving persona names untouched."""
    return _rename_keys(data, camel_to_snake, _parent)


def convert_to_camel(data: Any, *, _parent: str | None = None) -> Any:
    """snake_case keys to camelCase, leaving persona names untouched."""
    return _rename_keys(data, snake_to_camel, _parent)


def _rename_keys(data: Any, rename, parent: str | None) -> Any:
    if isinstance(data, list):
        return [_rename_keys(item, rename, None) for item in data]
    if not isinstance(data, dict):
        return data
    if parent in _VERBATIM_KEY_SECTIONS:
        return {name: _rename_keys(value, rename, None) for name, value in data.items()}
    renamed: dict[str, Any] = {}
    for key, value in data.items():
        new_key = rename(key)
        # Section detection always uses the snake_case spelling.
        renamed[new_key] = _rename_keys(value, rename, camel_to_snake(key))
    return renamed


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
