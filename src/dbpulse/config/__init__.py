"""Configuration module for dbpulse.

This module provides:
- Pydantic models for configuration validation
- YAML config file loading and discovery
- Environment variable fallbacks and expansion
- Default configuration values
- Clear error messages for config issues
"""

from dbpulse.config.defaults import DEFAULT_CONFIG, DEFAULT_METRICS
from dbpulse.config.loader import (
    CollectionConfig,
    Config,
    ConfigError,
    ConfigKeyError,
    ConfigSyntaxError,
    ConfigValidationError,
    DatabaseConfig,
    IngestConfig,
    LoggingConfig,
    PoolConfig,
    SentryConfig,
    detect_database_type,
    get_config_path,
    load_config,
    parse_duration,
)

__all__ = [
    "Config",
    "CollectionConfig",
    "ConfigError",
    "ConfigKeyError",
    "ConfigSyntaxError",
    "ConfigValidationError",
    "DatabaseConfig",
    "IngestConfig",
    "LoggingConfig",
    "PoolConfig",
    "SentryConfig",
    "DEFAULT_CONFIG",
    "DEFAULT_METRICS",
    "detect_database_type",
    "get_config_path",
    "load_config",
    "parse_duration",
]
