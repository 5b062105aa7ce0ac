"""Configuration classes for the Explainer Relay.

This module contains all configuration classes organized by domain.
Configuration is loaded from environment variables and .env files, and the
combined object is frozen so request handlers can only read it.
"""

from typing import Any, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def str_to_bool(value: Any) -> bool:
    """Convert various string representations to boolean values.

    Examples:
        >>> str_to_bool("true")
        True
        >>> str_to_bool("0")
        False
        >>> str_to_bool("enabled")
        True
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on", "enabled")
    if isinstance(value, int):
        return bool(value)
    return bool(value)


class ServerConfig(BaseSettings):
    """Server configuration settings."""

    app_name: str = "Explainer Relay"
    app_version: str = "1.0.0"
    debug: bool = False

    server_port: int = Field(default=8080, alias="SERVER_PORT")
    server_host: str = Field(default="0.0.0.0", alias="SERVER_HOST")


class RedisConfig(BaseSettings):
    """Counter store (Redis) configuration settings."""

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_socket_timeout: int = 5
    redis_max_connections: int = 20

    # Daily quota
    quota_enabled: bool = Field(default=True, alias="QUOTA_ENABLED")
    quota_key_prefix: str = "quota"
    quota_daily_limit: int = Field(default=5, ge=1, alias="QUOTA_DAILY_LIMIT")

    @field_validator("quota_enabled", mode="before")
    @classmethod
    def validate_quota_enabled(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)

    @property
    def quota_store_configured(self) -> bool:
        """Whether a counter store is configured for the daily quota."""
        return self.quota_enabled and bool(self.redis_host.strip())


class GenerationConfig(BaseSettings):
    """Upstream generation service configuration settings."""

    generation_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    generation_base_url: str = Field(
        default="https://generativelanguage.googleapis.com", alias="GEMINI_BASE_URL"
    )
    generation_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")
    generation_api_key_header: str = "x-goog-api-key"
    generation_temperature: float = 0.7
    # Whether each streamed part repeats the whole text so far, or carries only new text
    generation_chunks_cumulative: bool = Field(default=True, alias="GEMINI_CHUNKS_CUMULATIVE")

    # Ceiling for connecting and for waiting on any single upstream read
    upstream_timeout_seconds: float = Field(default=25.0, gt=0, alias="UPSTREAM_TIMEOUT_SECONDS")
    # Ceiling for one whole relay invocation
    stream_deadline_seconds: float = Field(default=180.0, gt=0, alias="STREAM_DEADLINE_SECONDS")

    @field_validator("generation_chunks_cumulative", mode="before")
    @classmethod
    def validate_generation_chunks_cumulative(cls, v) -> bool:
        return str_to_bool(v)

    @field_validator("generation_base_url")
    @classmethod
    def validate_generation_base_url(cls, v: str) -> str:
        """Ensure the generation base URL is properly formatted."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("generation_base_url must start with http:// or https://")
        return v.rstrip("/")

    @property
    def generation_configured(self) -> bool:
        """Whether an upstream credential is available."""
        return bool(self.generation_api_key.strip())


class LimitsConfig(BaseSettings):
    """Request clamping and continuation settings."""

    min_max_tokens: int = 256
    max_max_tokens: int = 8000
    default_max_tokens: int = 1200

    min_max_chars: int = 500
    max_max_chars: int = 50000
    default_max_chars: int = 4000

    prior_text_max_chars: int = 20000

    continuation_marker: str = "...(continua)"
    continuation_ratio: float = Field(default=0.92, gt=0, le=1)


class MonitoringConfig(BaseSettings):
    """Monitoring configuration settings."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_json", mode="before")
    @classmethod
    def validate_log_json(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)


class SecurityConfig(BaseSettings):
    """Security configuration settings."""

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    forwarded_for_header: str = "X-Forwarded-For"


class ApplicationConfig(
    ServerConfig,
    RedisConfig,
    GenerationConfig,
    LimitsConfig,
    MonitoringConfig,
    SecurityConfig,
    BaseSettings,
):
    """Main application configuration that combines all configuration domains."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )
