"""Configuration management for the Explainer Relay.

This module handles all configuration loading and validation using Pydantic BaseSettings.
Configuration is loaded from environment variables and .env files.
"""

from .config import (
    ApplicationConfig,
    GenerationConfig,
    LimitsConfig,
    MonitoringConfig,
    RedisConfig,
    SecurityConfig,
    ServerConfig,
    str_to_bool,
)


def load_config() -> ApplicationConfig:
    """Load and validate application configuration."""
    return ApplicationConfig()


__all__ = [
    "ApplicationConfig",
    "ServerConfig",
    "RedisConfig",
    "GenerationConfig",
    "LimitsConfig",
    "MonitoringConfig",
    "SecurityConfig",
    "load_config",
    "str_to_bool",
]
