"""Settings from config.json, .env.json and the environment."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .archive import IGNORED_DIR_NAME

CONFIG_FILENAME = "config.json"
ENV_FILENAME = ".env.json"


class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""

    pass


@dataclass
class Settings:
    mod_base_dir: Path = Path("../.minecraft/mods")
    download_temp_dir: Path = Path("./tmp/downloads")
    annotated_file: Path = Path("./annotated_mods.json")
    ignored_dir: str = IGNORED_DIR_NAME
    scan_depth: int = 4
    update_batch_size: int = 8
    github_api_key: str | None = None

    @property
    def ignored_path(self) -> Path:
        return self.mod_base_dir / self.ignored_dir


def _read_json_object(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected an object")
    return data


def _path_setting(data: dict[str, Any], key: str, default: Path) -> Path:
    value = data.get(key)
    if not value:
        return default
    # "mods/" and "mods" mean the same folder
    return Path(str(value).rstrip("/") or "/")


def _int_setting(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}")


def load_settings(config_path: Path | None = None) -> Settings:
    """
    Build settings from an optional config file.

    config_path defaults to ./config.json; a missing default file just
    means defaults. The GitHub key comes from GITHUB_API_KEY, else from
    .env.json next to the config file.
    """
    explicit = config_path is not None
    config_path = Path(config_path) if explicit else Path(CONFIG_FILENAME)

    data: dict[str, Any] = {}
    if config_path.exists():
        data = _read_json_object(config_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")

    defaults = Settings()
    settings = Settings(
        mod_base_dir=_path_setting(data, "MOD_BASE_DIR", defaults.mod_base_dir),
        download_temp_dir=_path_setting(data, "DOWNLOAD_TEMP_DIR", defaults.download_temp_dir),
        annotated_file=_path_setting(data, "ANNOTATED_FILE", defaults.annotated_file),
        ignored_dir=str(data.get("IGNORED_DIR") or defaults.ignored_dir),
        scan_depth=_int_setting(data, "SCAN_DEPTH", defaults.scan_depth),
        update_batch_size=_int_setting(data, "UPDATE_BATCH_SIZE", defaults.update_batch_size),
    )

    settings.github_api_key = os.environ.get("GITHUB_API_KEY")
    if not settings.github_api_key:
        env_path = config_path.parent / ENV_FILENAME
        if env_path.exists():
            settings.github_api_key = _read_json_object(env_path).get("GITHUB_API_KEY")

    return settings
