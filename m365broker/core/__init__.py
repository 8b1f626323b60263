"""Core module initialization."""

from .config_manager import (
    ConfigManager,
    BrokerConfig,
    AuthConfig,
    SettingsConfig,
    StorageConfig,
    LoggingConfig,
    DEFAULT_APP_ID,
    DEFAULT_TENANT,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    "ConfigManager",
    "BrokerConfig",
    "AuthConfig",
    "SettingsConfig",
    "StorageConfig",
    "LoggingConfig",
    "DEFAULT_APP_ID",
    "DEFAULT_TENANT",
    "setup_logging",
    "get_logger",
]
