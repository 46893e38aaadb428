"""Configuration management module for the notification delivery engine."""

from .duration import DurationParseError, parse_duration
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config, validate_config_file
from .models import (
    AppConfig,
    DeliveryConfig,
    EmailProvider,
    GatewayConfig,
    LinksConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    QueueConfig,
    SchedulerConfig,
    StatsConfig,
)

__all__ = [
    # Main loader functions
    "load_config",
    "parse_config",
    "validate_config_file",
    "load_environment_config",
    "parse_duration",
    # Configuration models
    "AppConfig",
    "DeliveryConfig",
    "SchedulerConfig",
    "StatsConfig",
    "QueueConfig",
    "GatewayConfig",
    "LinksConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "EmailProvider",
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
    "DurationParseError",
]
