"""Configuration management for MyDeviceAI.

Settings come from three layers, later ones winning: model defaults, the YAML
file, then ``MYDEVICEAI_*`` environment variables.
"""

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from mydeviceai.models.config import AppConfig, PathsConfig, default_app_dir

ENV_PREFIX = "MYDEVICEAI_"


def _set_log_level(config: AppConfig, value: str) -> None:
    level = value.upper()
    if level in ("INFO", "DEBUG", "TRACE"):
        config.advanced.log_level = level  # type: ignore[assignment]


def _set_data_dir(config: AppConfig, value: str) -> None:
    # Rebuild so llama/bin/models/logs follow the new root
    config.paths = PathsConfig(data_dir=Path(value).expanduser())


# Environment variable suffix -> setter
ENV_OVERRIDES: dict[str, Callable[[AppConfig, str], None]] = {
    "SERVER_PORT": lambda c, v: setattr(c.server, "port", int(v)),
    "SERVER_HOST": lambda c, v: setattr(c.server, "host", v),
    "DATA_DIR": _set_data_dir,
    "RELEASE_TAG": lambda c, v: setattr(c.runtime, "release_tag", v),
    "LOG_LEVEL": _set_log_level,
}


class ConfigManager:
    """Loads, caches and saves the YAML configuration file."""

    def __init__(self, config_path: Path | None = None) -> None:
        """
        Args:
            config_path: Config file; defaults to MYDEVICEAI_CONFIG_PATH, then
                config.yaml in the platform app-data directory
        """
        if config_path is None:
            env_path = os.getenv(f"{ENV_PREFIX}CONFIG_PATH")
            config_path = Path(env_path).expanduser() if env_path else default_app_dir() / "config.yaml"
        self.config_path = config_path
        self._config: AppConfig | None = None

    def _read_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            return {}
        with open(self.config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}

    def load(self) -> AppConfig:
        """Build a fresh configuration from the file and the environment."""
        config = AppConfig(**self._read_file())
        for suffix, apply in ENV_OVERRIDES.items():
            value = os.getenv(f"{ENV_PREFIX}{suffix}")
            if value:
                apply(config, value)
        return config

    def save(self, config: AppConfig) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json", exclude_none=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def get_config(self) -> AppConfig:
        if self._config is None:
            self._config = self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Drop the cached configuration and load it again."""
        self._config = self.load()
        return self._config

    def set_current(self, config: AppConfig) -> None:
        self._config = config


# Process-wide manager used by the API and the logger
_config_manager = ConfigManager()


def get_config() -> AppConfig:
    """Get the process-wide configuration, loading it on first use."""
    return _config_manager.get_config()


def save_config(config: AppConfig) -> None:
    """Persist ``config`` and make it the current configuration.

    Services created earlier keep the values they were built with until restart.
    """
    _config_manager.save(config)
    _config_manager.set_current(config)
