"""Configuration management for cmdrelay.

Provides centralized configuration with TOML support and validation, loaded
hierarchically from defaults → config file → environment → CLI.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import toml

from cmdrelay.models import Config
from cmdrelay.utils.exceptions import ConfigurationError
from cmdrelay.utils.logging_config import setup_logging

CONFIG_FILE_NAME = "cmdrelay.toml"

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    "CMDRELAY_HOST": "server.host",
    "CMDRELAY_PORT": "server.port",
    "CMDRELAY_MODE": "server.mode",
    "CMDRELAY_SHELL": "server.shell",
    "CMDRELAY_APP_URL": "session.app_url",
    "CMDRELAY_GITHUB_TOKEN": "session.github_token",
    "CMDRELAY_READINESS_ATTEMPTS": "session.readiness_attempts",
    "CMDRELAY_READINESS_DELAY": "session.readiness_delay",
    "CMDRELAY_CONNECT_ATTEMPTS": "session.connect_attempts",
    "CMDRELAY_CONNECT_DELAY": "session.connect_delay",
    "CMDRELAY_IMAGE": "container.image",
    "CMDRELAY_RUNTIME_IMAGE": "container.runtime_image",
    "CMDRELAY_CONTAINER_NAME": "container.name",
    "CMDRELAY_LOG_LEVEL": "observability.log_level",
    "CMDRELAY_LOG_FILE": "observability.log_file",
    "CMDRELAY_STRUCTURED_LOGGING": "observability.structured_logging",
}

# Paths whose values stay strings even when they look numeric or boolean
_STRING_PATHS = frozenset(
    {
        "server.host",
        "server.shell",
        "session.app_url",
        "session.github_token",
        "container.image",
        "container.runtime_image",
        "container.name",
        "observability.log_file",
    }
)



def _parse_env_value(raw: str, path: str) -> bool | int | float | str:
    if path in _STRING_PATHS:
        return raw
    # Digits stay numeric; pydantic still accepts 0/1 for boolean fields
    low = raw.lower()
    if low in {"true", "yes", "on"}:
        return True
    if low in {"false", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None, setup_log: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for cmdrelay.toml
            setup_log: Configure logging from the loaded observability section

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        if setup_log:
            self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "cmdrelay" / CONFIG_FILE_NAME,
            Path.home() / f".{CONFIG_FILE_NAME}",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e

        config_data = self._merge_config(config_data, self._get_env_config())

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))
        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def apply_overrides(self, overrides: dict[str, Any]) -> Config:
        """Apply dotted-path overrides (e.g. from CLI options) and revalidate.

        ``None`` values are skipped so unset CLI options keep the loaded value.
        """
        nested: dict[str, Any] = {}
        for path, value in overrides.items():
            if value is not None:
                _set_nested(nested, path, value)
        if not nested:
            return self.config

        data = self._merge_config(self.config.model_dump(mode="json"), nested)
        try:
            self.config = Config(**data)
        except Exception as e:
            msg = f"Invalid configuration override: {e}"
            raise ConfigurationError(msg) from e
        return self.config

    def export(self) -> str:
        """Export current configuration as TOML."""
        data = self.config.model_dump(mode="json", exclude_none=True)
        return toml.dumps(data)

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)
