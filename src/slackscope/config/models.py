"""Pydantic models for application configuration."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class TLSConfig(BaseModel):
    """TLS overrides for outbound connections."""

    ca_bundle: Path | None = Field(
        default=None,
        description="Path to a PEM bundle used instead of the system trust store.",
    )
    ciphers: str | None = Field(
        default=None,
        description=(
            "OpenSSL cipher string applied to the client context. Changing it "
            "alters the TLS fingerprint presented to the upstream."
        ),
    )
    verify: bool = True


class SlackConfig(BaseModel):
    """Slack credentials and outbound connection settings."""

    xoxp_token: str | None = Field(
        default=None,
        description=(
            "Delegated user OAuth token (typically starts with 'xoxp-'). "
            "Preferred over session credentials when present."
        ),
    )
    xoxc_token: str | None = Field(
        default=None,
        description="Browser session token (typically starts with 'xoxc-').",
    )
    xoxd_token: str | None = Field(
        default=None,
        description="Browser session cookie value 'd' (typically starts with 'xoxd-').",
    )
    team_id: str | None = Field(
        default=None,
        description=(
            "Team to pin for team-scoped operations when the identity can "
            "reach several teams."
        ),
    )
    api_url: str = "https://slack.com/api/"
    user_agent: str | None = None
    proxy: str | None = None
    tls: TLSConfig = Field(default_factory=TLSConfig)
    request_timeout: float = 30.0


class CacheConfig(BaseModel):
    """Directory snapshot locations."""

    directory: Path = Path("./cache")
    users_file: Path | None = None
    channels_file: Path | None = None
    emojis_file: Path | None = None


class RateLimitConfig(BaseModel):
    """Request budgets per endpoint class, in requests per minute."""

    tier2: int = Field(default=20, gt=0)
    tier3: int = Field(default=50, gt=0)
    tier4: int = Field(default=100, gt=0)
    max_wait: float = Field(
        default=30.0,
        ge=0,
        description="Longest time a caller blocks waiting for the gate.",
    )
    max_retries: int = Field(default=3, ge=0)


class QueryConfig(BaseModel):
    """Defaults applied by the HTTP surface."""

    default_limit: str = "1d"
    timeout: float = 60.0


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 13080


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "json"


class AppConfig(BaseModel):
    """Application configuration."""

    slack: SlackConfig = Field(default_factory=SlackConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
