"""
Configuration management for m365broker.

Handles loading, validation, and access to configuration settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, List
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_APP_ID = "31359c7f-bd7e-475c-86db-fdb8c937548e"
DEFAULT_TENANT = "common"
DEFAULT_CONFIG_DIR = "~/.m365broker"
CONFIG_FILE_NAME = "config.yaml"

_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class OutputFormat(str, Enum):
    """Command output formats."""
    TEXT = "text"
    JSON = "json"


class AuthConfig(BaseModel):
    """Identity provider application and login defaults."""
    app_id: str = DEFAULT_APP_ID
    tenant: str = DEFAULT_TENANT
    auth_type: str = "deviceCode"
    browser_timeout: float = Field(
        default=300.0,
        gt=0.0,
        description="Seconds to wait for the browser to deliver an authorization code"
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for managed identity endpoint calls"
    )


class SettingsConfig(BaseModel):
    """User settings consulted during interactive flows."""
    auto_open_links_in_browser: bool = False
    copy_device_code_to_clipboard: bool = False
    output: OutputFormat = OutputFormat.TEXT

    model_config = ConfigDict(use_enum_values=True)


class StorageConfig(BaseModel):
    """Where the session and identity-library cache are persisted."""
    directory: str = DEFAULT_CONFIG_DIR
    connection_info_file: str = "connection.json"
    msal_cache_file: str = "msal_cache.json"

    def connection_info_path(self) -> Path:
        return Path(self.directory).expanduser() / self.connection_info_file

    def msal_cache_path(self) -> Path:
        return Path(self.directory).expanduser() / self.msal_cache_file


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.WARNING
    format: str = "text"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'m365broker.auth.broker': 'DEBUG'}"
    )

    model_config = ConfigDict(use_enum_values=True)


class BrokerConfig(BaseModel):
    """Main m365broker configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    auth: AuthConfig = Field(default_factory=AuthConfig)

    settings: SettingsConfig = Field(default_factory=SettingsConfig)

    storage: StorageConfig = Field(default_factory=StorageConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages m365broker configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (M365BROKER_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[BrokerConfig] = None
        self._config_file: Optional[Path] = None

    @staticmethod
    def default_config_file() -> Path:
        """Location of the user config file, honouring M365BROKER_CONFIG_DIR."""
        directory = os.getenv("M365BROKER_CONFIG_DIR", DEFAULT_CONFIG_DIR)
        return Path(directory).expanduser() / CONFIG_FILE_NAME

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> BrokerConfig:
        """
        Load and validate configuration from multiple sources.

        When no file is given, the default user config file is read if it
        exists.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Dictionary of CLI argument overrides

        Returns:
            Validated BrokerConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.debug("Loading m365broker configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.debug(f"Loaded configuration from file: {config_file}")
        else:
            default_file = self.default_config_file()
            self._config_file = default_file
            if default_file.exists():
                config_dict = self._load_from_file(str(default_file))

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.debug(f"Applied {len(env_config)} environment variable overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.debug(f"Applied {len(cli_overrides)} CLI argument overrides")

        try:
            self._config = BrokerConfig(**config_dict)
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        if app_id := os.getenv("M365BROKER_APP_ID"):
            config.setdefault("auth", {})["app_id"] = app_id
        if tenant := os.getenv("M365BROKER_TENANT"):
            config.setdefault("auth", {})["tenant"] = tenant
        if auth_type := os.getenv("M365BROKER_AUTH_TYPE"):
            config.setdefault("auth", {})["auth_type"] = auth_type

        if config_dir := os.getenv("M365BROKER_CONFIG_DIR"):
            config.setdefault("storage", {})["directory"] = config_dir

        if log_level := os.getenv("M365BROKER_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("M365BROKER_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        if auto_open := os.getenv("M365BROKER_AUTO_OPEN_LINKS_IN_BROWSER"):
            config.setdefault("settings", {})["auto_open_links_in_browser"] = auto_open.lower() in _TRUE_VALUES
        if copy_code := os.getenv("M365BROKER_COPY_DEVICE_CODE_TO_CLIPBOARD"):
            config.setdefault("settings", {})["copy_device_code_to_clipboard"] = copy_code.lower() in _TRUE_VALUES

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _log_configuration(self) -> None:
        """Log the loaded configuration."""
        if not self._config:
            return

        config_dict = self._config.model_dump()
        logger.debug(f"Active configuration: {json.dumps(config_dict, indent=2)}")

    def get_config(self) -> BrokerConfig:
        """
        Get the loaded configuration.

        Returns:
            BrokerConfig instance

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> BrokerConfig:
        """
        Reload configuration from the same sources.

        Returns:
            Reloaded BrokerConfig instance
        """
        config_file = str(self._config_file) if self._config_file and self._config_file.exists() else None
        return self.load(config_file=config_file)

    @staticmethod
    def setting_names() -> List[str]:
        """Names accepted by set_setting()."""
        return list(SettingsConfig.model_fields.keys())

    def set_setting(self, key: str, value: str) -> BrokerConfig:
        """
        Persist a single user setting into the YAML config file.

        Args:
            key: Name of a field of SettingsConfig
            value: Raw string value as typed by the user

        Returns:
            Reloaded BrokerConfig instance

        Raises:
            ValueError: If the key is unknown or the value is invalid
        """
        allowed = self.setting_names()
        if key not in allowed:
            raise ValueError(f"{key} is not a valid setting. Allowed values: {', '.join(allowed)}")

        parsed: Any = value
        if isinstance(SettingsConfig.model_fields[key].default, bool):
            lowered = value.lower()
            if lowered in _TRUE_VALUES:
                parsed = True
            elif lowered in _FALSE_VALUES:
                parsed = False
            else:
                raise ValueError(f"{value} is not a valid value for the option {key}. Allowed values: true, false")

        path = self._config_file or self.default_config_file()
        if path.suffix not in ['.yaml', '.yml']:
            raise ValueError(f"Settings can only be written to a YAML file, got: {path}")

        current: Dict[str, Any] = self._load_from_file(str(path)) if path.exists() else {}
        current.setdefault("settings", {})[key] = parsed

        try:
            BrokerConfig(**current)
        except ValidationError as e:
            raise ValueError(f"{value} is not a valid value for the option {key}: {e.errors()[0]['msg']}") from e

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(current, f, default_flow_style=False)

        logger.debug(f"Setting '{key}' saved to {path}")
        self._config_file = path
        return self.load(config_file=str(path))
