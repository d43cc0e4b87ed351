"""
Manages loading, validation, and migration of the INI configuration file.

Precedence, lowest first: INI file, environment variables, CLI options.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from story_relay.exceptions import ConfigurationError
from story_relay.models.config import RelayConfig

log = logging.getLogger(__name__)

# Environment variable -> config key
ENV_OVERRIDES = {
    "TELEGRAM_BOT_TOKEN": "bot_token",
    "TELESTORY_API_URL": "catalog_api_url",
    "TELESTORY_API_KEY": "catalog_api_key",
    "ARCHIVE_CHANNEL_ID": "archive_channel_id",
    "APP_ENV": "app_env",
    "DATABASE_PATH": "database_path",
    "SCRATCH_DIR": "scratch_dir",
    "PORT": "health_port",
}

# Keys written to a fresh config file, with their defaults
INI_DEFAULTS: dict[str, str] = {
    "bot_token": "",
    "catalog_api_url": "",
    "catalog_api_key": "",
    "archive_channel_id": "",
    "app_env": "development",
    "cooldown_seconds": "",
    "daily_limit": "",
    "timezone": "UTC",
    "max_workers": "8",
    "catalog_timeout": "30",
    "download_timeout": "120",
    "send_timeout": "60",
    "request_deadline": "600",
    "poll_timeout": "10",
    "database_path": "story_relay.sqlite",
    "scratch_dir": "",
    "health_port": "8080",
}


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path, environ: Mapping[str, str] | None = None):
        self.config_file_path = config_file_path
        self._environ = os.environ if environ is None else environ
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> RelayConfig:
        """
        Loads configuration from the INI file (if present), applies environment
        and CLI overrides, and validates the result.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated RelayConfig object.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        if self.config_file_path.is_file():
            settings = self.read_file()
            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
        else:
            log.debug(
                f"No config file at '{self.config_file_path}', using environment only."
            )
            settings = {}

        settings.update(self._get_env_overrides())
        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return RelayConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {
            key: str(settings.get(key, default) or default)
            for key, default in INI_DEFAULTS.items()
        }

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def read_file(self) -> dict[str, Any]:
        """Parses the INI file and returns its settings."""
        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e
        return self.get_config_as_dict()

    def get_config_as_dict(self) -> dict[str, Any]:
        """Reads the non-empty values of the 'DEFAULT' section into a dictionary."""
        section = self._parser["DEFAULT"]
        return {
            key: value.strip()
            for key, value in section.items()
            if key in INI_DEFAULTS and value.strip()
        }

    def _get_env_overrides(self) -> dict[str, str]:
        return {
            key: self._environ[name]
            for name, key in ENV_OVERRIDES.items()
            if self._environ.get(name)
        }

    def _migrate_if_needed(self) -> bool:
        """Adds missing default keys to an existing config file."""
        section = self._parser["DEFAULT"]
        missing = [key for key in INI_DEFAULTS if key not in section]
        if not missing:
            return False

        for key in missing:
            section[key] = INI_DEFAULTS[key]
            log.debug(f"Migrating config: added missing key '{key}'.")

        try:
            with open(self.config_file_path, "w", encoding="utf-8") as f:
                self._parser.write(f)
        except OSError as e:
            log.error(f"Could not save migrated configuration file: {e}")
            return False
        return True
