"""
Centralized configuration manager with validation and environment fallbacks.
"""
import os
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Any, Optional, TypeVar, Union

from dotenv import load_dotenv

from automapping.config import settings as default_settings
from automapping.core.errors import SettingsError

logger = logging.getLogger(__name__)

# Type variables
T = TypeVar('T')

ENV_PREFIX = "AUTOMAPPING_"

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigManager:
    """
    Centralized configuration manager.

    Settings are resolved in this order, later sources winning: defaults from
    automapping.config.settings, an optional JSON settings file, environment
    variables (after loading a .env file) and explicit overrides.
    """

    def __init__(self, env_file: Optional[str] = None, settings_file: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize the configuration manager.

        Args:
            env_file: Path to .env file (default: .env in the working directory, if present)
            settings_file: Path to a JSON settings file
            overrides: Explicit setting values

        Raises:
            SettingsError: If a resulting value is invalid
        """
        self._load_env_file(env_file)

        self.settings: Dict[str, Any] = self._load_defaults()

        if settings_file:
            self.settings.update(self._load_settings_file(settings_file))

        self._apply_env_overrides()

        if overrides:
            self.settings.update({key.upper(): value for key, value in overrides.items()})

        self.validate()

    @staticmethod
    def _load_env_file(env_file: Optional[str] = None) -> None:
        """
        Load environment variables from .env file.

        Args:
            env_file: Path to .env file (default: .env)
        """
        if env_file:
            if os.path.exists(env_file):
                load_dotenv(env_file)
                logger.info(f"Loaded environment variables from {env_file}")
            else:
                logger.warning(f"Environment file not found: {env_file}")
        elif os.path.exists('.env'):
            load_dotenv('.env')
            logger.debug("Loaded environment variables from .env")

    @staticmethod
    def _load_defaults() -> Dict[str, Any]:
        return {
            key: value for key, value in vars(default_settings).items()
            if key.isupper() and not key.startswith('_')
        }

    @staticmethod
    def _load_settings_file(settings_file: str) -> Dict[str, Any]:
        """
        Load settings from a JSON file.

        Args:
            settings_file: File path

        Returns:
            Settings dictionary

        Raises:
            SettingsError: If the file is missing or not a JSON object
        """
        path = Path(settings_file)
        if not path.exists():
            raise SettingsError(f"Settings file not found: {path}", code="missing_settings_file")

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SettingsError(f"Invalid JSON in settings file {path}: {e}", code="invalid_settings_file") from e

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {path} must contain a JSON object", code="invalid_settings_file")

        logger.info(f"Loaded settings from {path}")
        return {key.upper(): value for key, value in data.items()}

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        for key in list(self.settings.keys()):
            env_key = f"{ENV_PREFIX}{key}"
            if env_key not in os.environ:
                continue

            env_value = os.environ[env_key]
            current_value = self.settings[key]

            try:
                # Convert to the same type as the current value
                if isinstance(current_value, bool):
                    self.settings[key] = env_value.lower() in ('true', 'yes', '1', 'y')
                elif isinstance(current_value, int):
                    self.settings[key] = int(env_value)
                elif isinstance(current_value, float):
                    self.settings[key] = float(env_value)
                else:
                    self.settings[key] = env_value
            except (ValueError, TypeError) as e:
                raise SettingsError(
                    f"Error converting environment variable {env_key} to {type(current_value).__name__}: {e}",
                    code="invalid_setting",
                    details={"key": key, "value": env_value}
                ) from e

    def get(self, key: str, default: Optional[T] = None) -> Union[Any, T]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.settings.get(key, default)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """
        Get an integer configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Integer value or default
        """
        value = self.get(key, default)
        if value is None:
            return None

        try:
            return int(value)
        except (ValueError, TypeError):
            logger.warning(f"Invalid integer value for {key}: {value}")
            return default

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """
        Get a boolean configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Boolean value or default
        """
        value = self.get(key, default)
        if value is None:
            return None

        if isinstance(value, bool):
            return value

        if isinstance(value, str):
            return value.lower() in ('true', 'yes', '1', 'y')

        return bool(value)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            SettingsError: If a value is out of range
        """
        level = str(self.get("LOG_LEVEL", "INFO")).upper()
        if level not in _VALID_LOG_LEVELS:
            raise SettingsError(f"Invalid configuration value for LOG_LEVEL: {level}",
                                code="invalid_setting", details={"key": "LOG_LEVEL", "value": level})

        depth = self.get("MAX_MAPPING_DEPTH")
        if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1:
            raise SettingsError(f"Invalid configuration value for MAX_MAPPING_DEPTH: {depth}",
                                code="invalid_setting", details={"key": "MAX_MAPPING_DEPTH", "value": depth})


# Global configuration manager instance, created on first use
_config: Optional[ConfigManager] = None
_config_lock = threading.Lock()


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        Global configuration manager
    """
    global _config
    with _config_lock:
        if _config is None:
            _config = ConfigManager()
        return _config


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config
    with _config_lock:
        _config = None
