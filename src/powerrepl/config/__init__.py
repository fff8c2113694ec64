"""Configuration management for power-repl.

Loads and validates YAML-based configuration with Pydantic models,
with environment variable overrides.
"""

from powerrepl.config.settings import (
    ConnectConfig,
    LoggingConfig,
    ServeConfig,
    Settings,
    load_settings,
)

__all__ = ["ConnectConfig", "LoggingConfig", "ServeConfig", "Settings", "load_settings"]
