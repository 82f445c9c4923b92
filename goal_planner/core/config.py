from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from goal_planner.core.errors import ConfigError


DEFAULT_STORE_PATH = "goal-planner.yaml"
DEFAULT_USER_ID = "local"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_CONFIG = "GOAL_PLANNER_CONFIG"
ENV_KEYS: dict[str, str] = {
    "store_path": "GOAL_PLANNER_STORE",
    "user_id": "GOAL_PLANNER_USER",
    "log_level": "GOAL_PLANNER_LOG_LEVEL",
    "log_file": "GOAL_PLANNER_LOG_FILE",
}


@dataclass(frozen=True)
class Settings:
    store_path: str = DEFAULT_STORE_PATH
    user_id: str = DEFAULT_USER_ID
    log_level: str = "WARNING"
    log_file: Optional[str] = None


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      store_path: ./goals.yaml
      user_id: alice
      log_level: INFO

    Unknown keys are rejected so typos do not pass silently.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(code="E_CONFIG_NOT_FOUND", message=f"config file not found: {p}", field="config")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(code="E_YAML_PARSE", message=str(e), entity=str(p)) from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(code="E_INVALID_TOP_LEVEL", message="config must be a mapping", entity=str(p))
    unknown = sorted(set(raw) - set(ENV_KEYS))
    if unknown:
        raise ConfigError(
            code="E_UNKNOWN_SETTING",
            message=f"unknown settings: {', '.join(map(str, unknown))}",
            entity=str(p),
        )
    return raw


def load_settings(config_file: Optional[str] = None, env: Optional[dict[str, str]] = None) -> Settings:
    """Resolve settings.

    Resolution order (later wins):
      1) defaults
      2) YAML config file (argument, else GOAL_PLANNER_CONFIG)
      3) GOAL_PLANNER_* environment variables
    """

    environ = os.environ if env is None else env
    values: dict[str, Any] = {}

    path = config_file or environ.get(ENV_CONFIG)
    if path:
        values.update(load_config_file(path))

    for name, key in ENV_KEYS.items():
        v = (environ.get(key, "") or "").strip()
        if v:
            values[name] = v

    return _coerce(replace(Settings(), **{k: v for k, v in values.items()}))


def _coerce(s: Settings) -> Settings:
    level = str(s.log_level).strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigError(
            code="E_INVALID_LOG_LEVEL",
            message=f"log_level must be one of {', '.join(LOG_LEVELS)}",
            field="log_level",
        )
    if not str(s.user_id).strip():
        raise ConfigError(code="E_REQUIRED_FIELD", message="user_id must be non-empty", field="user_id")
    if not str(s.store_path).strip():
        raise ConfigError(code="E_REQUIRED_FIELD", message="store_path must be non-empty", field="store_path")
    return replace(
        s,
        store_path=str(s.store_path),
        user_id=str(s.user_id).strip(),
        log_level=level,
        log_file=str(s.log_file) if s.log_file else None,
    )
