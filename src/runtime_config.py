"""Runtime config loader for the image mapper CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Sequence


def load_runtime_config(config_file: str | None) -> dict[str, Any]:
    if not config_file:
        return {}
    path = Path(config_file)
    if not path.exists() or not path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_file}")

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("config file must contain a JSON object")
    return payload


def value_from_sources(
    *,
    cli_value: Any,
    config: dict[str, Any],
    key: str,
    env_var: str | None = None,
    default: Any = None,
) -> Any:
    """CLI flag, then config file, then environment, then default."""
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    if env_var:
        env_value = os.getenv(env_var)
        if env_value:
            return env_value
    return default


def as_string_list(value: Any, default: Sequence[str]) -> list[str]:
    """Accept a JSON list or a comma-separated string."""
    if value is None:
        return list(default)
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError(f"expected a list or comma-separated string, got {type(value).__name__}")
    cleaned = [item.strip() for item in items if item.strip()]
    return cleaned or list(default)
