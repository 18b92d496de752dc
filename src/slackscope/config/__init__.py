"""Configuration module for slackscope."""

from slackscope.config.loader import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    EnvVarNotFoundError,
    MissingCredentialsError,
    load_config,
)
from slackscope.config.models import (
    AppConfig,
    CacheConfig,
    LoggingConfig,
    QueryConfig,
    RateLimitConfig,
    ServerConfig,
    SlackConfig,
    TLSConfig,
)

__all__ = [
    # Exceptions
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "EnvVarNotFoundError",
    "MissingCredentialsError",
    # Functions
    "load_config",
    # Models
    "AppConfig",
    "CacheConfig",
    "LoggingConfig",
    "QueryConfig",
    "RateLimitConfig",
    "ServerConfig",
    "SlackConfig",
    "TLSConfig",
]
