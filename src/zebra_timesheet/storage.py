from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .models import Config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".zebra_timesheet"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_STORAGE_PATH = DEFAULT_CONFIG_DIR

FRAMES_FILE = "frames.json"
CURRENT_FRAME_FILE = "current_frame.json"
TIMESHEETS_FILE = "timesheets.json"
LOCAL_PROJECTS_FILE = "local-projects.json"
CACHE_DIR = "cache"
PROJECTS_CACHE_FILE = "projects.json"


class JsonFileStorage:
    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable JSON file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def _optional_int(value: Any, key: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config value {key} must be an integer, got {value!r}.") from exc


def read_config_data(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config at {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config at {path} must be a mapping.")
    return data


def write_config_data(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def config_from_data(data: dict[str, Any]) -> Config:
    return Config(
        base_uri=str(data.get("base_uri") or ""),
        token_env_var=str(data.get("token_env_var") or "ZEBRA_TOKEN"),
        user_id=_optional_int(get_config_value(data, "user.id"), "user.id"),
        default_role_id=_optional_int(
            get_config_value(data, "user.defaultRole.id"), "user.defaultRole.id"
        ),
        timezone=data.get("timezone") or None,
        storage_path=Path(data.get("storage_path") or DEFAULT_STORAGE_PATH).expanduser(),
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config not found at {path}. Run 'zebra init' first.")
    return config_from_data(read_config_data(path))


def save_config(path: Path, config: Config) -> None:
    data = read_config_data(path)
    data.update(
        {
            "base_uri": config.base_uri,
            "token_env_var": config.token_env_var,
            "timezone": config.timezone,
            "storage_path": str(config.storage_path),
        }
    )
    set_config_value(data, "user.id", config.user_id)
    set_config_value(data, "user.defaultRole.id", config.default_role_id)
    write_config_data(path, data)


def get_config_value(data: dict[str, Any], key: str) -> Any:
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def set_config_value(data: dict[str, Any], key: str, value: Any) -> None:
    if isinstance(value, str) and value.lstrip("-").isdigit():
        value = int(value)
    parts = key.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value
