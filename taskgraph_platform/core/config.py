from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from taskgraph_platform.core.errors import ConfigError


CONFIG_FILE_NAME = "config.yaml"
LOG_LEVEL_ENV = "TASKGRAPH_LOG_LEVEL"

DEFAULT_CONFIG: dict[str, Any] = {
    "backup_count": 5,
    "auto_backup": True,
    "write_attempts": 3,
    "retry_base_delay": 0.05,
    "sort_cache_ttl": 5.0,
    "log_level": "WARNING",
    "log_file": "",
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class ProjectConfig:
    backup_count: int = 5
    auto_backup: bool = True
    write_attempts: int = 3
    retry_base_delay: float = 0.05
    sort_cache_ttl: float = 5.0
    log_level: str = "WARNING"
    log_file: str = ""


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load config overrides from a YAML file.

    Format:
      backup_count: 5
      auto_backup: true
      log_file: logs/taskgraph.log   # relative to .taskgraph/
      ...

    Unknown keys and wrongly typed values are rejected.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(code="E_CONFIG_PARSE", message=str(e), file=str(p)) from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(code="E_CONFIG_INVALID", message="config file must be a mapping", file=str(p))

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in DEFAULT_CONFIG:
            raise ConfigError(
                code="E_CONFIG_UNKNOWN_KEY",
                message=f"unknown config key: {k} (choose from: {', '.join(sorted(DEFAULT_CONFIG))})",
                file=str(p),
                path=str(k),
            )
        out[k] = _coerce(k, v, str(p))
    return out


def _coerce(key: str, value: Any, file: Optional[str]) -> Any:
    default = DEFAULT_CONFIG[key]

    def bad(expected: str) -> ConfigError:
        return ConfigError(
            code="E_CONFIG_INVALID",
            message=f"{key} must be {expected}",
            file=file,
            path=key,
        )

    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise bad("a boolean")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise bad("a positive integer")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise bad("a non-negative number")
        return float(value)
    if key == "log_level":
        if not isinstance(value, str) or value.upper() not in _LOG_LEVELS:
            raise bad(f"one of {sorted(_LOG_LEVELS)}")
        return value.upper()
    if key == "log_file":
        if not isinstance(value, str):
            raise bad("a file path")
        return value.strip()
    return value


def merged_config(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return DEFAULT_CONFIG merged with optional overrides."""
    merged = dict(DEFAULT_CONFIG)
    if overrides:
        merged.update(overrides)
    return merged


def load_and_merge(config_file: str | Path | None) -> ProjectConfig:
    """Defaults, then the config file if it exists, then the environment."""
    overrides: dict[str, Any] = {}
    if config_file and Path(config_file).exists():
        overrides = load_config_file(config_file)

    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        overrides["log_level"] = _coerce("log_level", env_level, LOG_LEVEL_ENV)

    return ProjectConfig(**merged_config(overrides))
