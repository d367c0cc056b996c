# server_scheduler/config/settings.py
"""Manages application-wide configuration settings.

This module provides the `Settings` class, which is responsible for loading
settings from a JSON file, writing the defaults on first run, providing
default values for missing keys, and determining the application data and
configuration directories.

The configuration is stored in a nested JSON format. Settings are accessed
programmatically using dot-notation (e.g., `settings.get('multiplexer.type')`).

Unlike a module-level singleton, a `Settings` instance is created once at
startup and handed to the components that need it through the `AppContext`.
"""

import os
import json
import logging
import collections.abc
from typing import Any, Dict, Optional

from appdirs import user_data_dir

from server_scheduler.error import ConfigurationError
from server_scheduler.config.const import (
    package_name,
    app_author,
    env_name,
    get_installed_version,
)

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = 1
CONFIG_FILE_NAME = "server_scheduler.json"
DB_FILE_NAME = "server_scheduler.sqlite3"


def deep_merge(source: Dict, destination: Dict) -> Dict:
    """
    Recursively merges the `source` dictionary into the `destination` dictionary.

    Nested dictionaries are merged, while other values in `source` overwrite
    those in `destination`.

    Args:
        source: The dictionary with new or updated values.
        destination: The dictionary to be updated.

    Returns:
        The merged dictionary (`destination`).
    """
    for key, value in source.items():
        if isinstance(value, collections.abc.Mapping):
            node = destination.setdefault(key, {})
            deep_merge(value, node)
        else:
            destination[key] = value
    return destination


class Settings:
    """Manages loading and accessing application settings.

    The data directory comes from the `SERVER_SCHEDULER_DATA_DIR` environment
    variable when set, otherwise from the platform's user data directory.
    Settings live in `<data>/.config/server_scheduler.json`; missing keys
    fall back to `default_config`.
    """

    def __init__(self, data_dir: Optional[str] = None):
        """Initializes the Settings object and loads the configuration file.

        Args:
            data_dir: Overrides the data directory. Mostly useful for tests.
        """
        logger.debug("Initializing Settings")
        self._app_data_dir_path = data_dir or self._determine_app_data_dir()
        self._config_dir_path = self._determine_app_config_dir()
        self.config_path = os.path.join(self._config_dir_path, CONFIG_FILE_NAME)

        self._version_val = get_installed_version()

        self._settings: Dict[str, Any] = {}
        self.load()

    def _determine_app_data_dir(self) -> str:
        """Determines the main application data directory and creates it.

        Returns:
            The absolute path to the application data directory.
        """
        env_var_name = f"{env_name}_DATA_DIR"
        data_dir = os.environ.get(env_var_name)
        if not data_dir:
            data_dir = user_data_dir(package_name, app_author)
        try:
            os.makedirs(data_dir, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Could not create data directory: {data_dir}"
            ) from e
        return os.path.abspath(data_dir)

    def _determine_app_config_dir(self) -> str:
        config_dir = os.path.join(self._app_data_dir_path, ".config")
        try:
            os.makedirs(config_dir, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Could not create config directory: {config_dir}"
            ) from e
        return config_dir

    @property
    def default_config(self) -> dict:
        """Provides the default configuration values for the application.

        Returns:
            A dictionary of default settings with a nested structure.
        """
        app_data_dir_val = self._app_data_dir_path
        return {
            "config_version": CONFIG_SCHEMA_VERSION,
            "paths": {
                "logs": os.path.join(app_data_dir_val, ".logs"),
            },
            "db": {
                "url": "sqlite:///"
                + os.path.join(app_data_dir_val, DB_FILE_NAME),
            },
            "multiplexer": {
                "type": "screen",
                "path": None,
            },
            "retention": {
                "logs": 3,
            },
            "logging": {
                "file_level": logging.INFO,
                "cli_level": logging.WARN,
            },
            "scheduler": {
                "kill_timeout_sec": 5,
            },
        }

    def load(self):
        """Loads settings from the JSON configuration file.

        If the file doesn't exist, it's created with defaults. User settings
        are merged over the defaults.
        """
        self._settings = self.default_config

        if not os.path.exists(self.config_path):
            logger.info(
                f"Configuration file not found at {self.config_path}. "
                "Creating with default settings."
            )
            self._write_config()
        else:
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = json.load(f)
                deep_merge(user_config, self._settings)
            except (ValueError, OSError) as e:
                logger.warning(
                    f"Could not load config file at {self.config_path}: {e}. "
                    "Using default settings. A new config will be saved on the next settings change."
                )

        self._ensure_dirs_exist()

    def _ensure_dirs_exist(self):
        """Ensures that the log directory exists.

        Raises:
            ConfigurationError: If a directory cannot be created.
        """
        dir_path = self.resolve_path(self.get("paths.logs"))
        if dir_path:
            try:
                os.makedirs(dir_path, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(
                    f"Could not create critical directory: {dir_path}"
                ) from e

    def _write_config(self):
        """Writes the current settings dictionary to the JSON configuration file.

        Raises:
            ConfigurationError: If writing the configuration fails.
        """
        try:
            os.makedirs(self._config_dir_path, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
        except (OSError, TypeError) as e:
            raise ConfigurationError(f"Failed to write configuration: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a setting value using dot-notation for nested access.

        Example: `settings.get("multiplexer.type")`

        Args:
            key: The dot-separated configuration key.
            default: The value to return if the key is not found.

        Returns:
            The value associated with the key, or the default value.
        """
        d = self._settings
        try:
            for k in key.split("."):
                d = d[k]
            return d
        except (KeyError, TypeError):
            return default

    def resolve_path(self, path: Optional[str]) -> Optional[str]:
        """Makes a path from the settings absolute.

        Relative paths are resolved against the application data directory,
        so `.logs` becomes `<data>/.logs`.
        """
        if not path:
            return path
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.join(self._app_data_dir_path, path)

    @property
    def config_dir(self) -> str:
        """The absolute path to the application's configuration directory."""
        return self._config_dir_path

    @property
    def app_data_dir(self) -> str:
        """The absolute path to the application's main data directory."""
        return self._app_data_dir_path

    @property
    def version(self) -> str:
        """The installed version of the application package."""
        return self._version_val
