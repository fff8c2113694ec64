"""Configuration management for power-repl.

Loads settings from a YAML configuration file with environment variable
overrides (``POWERREPL_`` prefix, ``__`` between nested keys).
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from powerrepl.domain.models import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_PROMPT,
    HandshakeFrame,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/powerrepl.yaml")
DEFAULT_SOCKET_PATH = str(Path(tempfile.gettempdir()) / "power-repl.sock")


class ServeConfig(BaseModel):
    endpoint: str = Field(
        default=DEFAULT_SOCKET_PATH,
        description="Socket path or host:port the server listens on",
    )
    port_file: bool | None = Field(
        default=None,
        description="Force the loopback port-file indirection for socket paths",
    )
    mirror_stdout: bool = Field(
        default=True,
        description="Keep writing process output locally while sessions are attached",
    )


class ConnectConfig(BaseModel):
    endpoint: str = Field(default=DEFAULT_SOCKET_PATH)
    prompt: str = Field(default=DEFAULT_PROMPT, min_length=1)
    history: Path | None = Field(
        default=None,
        description="History file (default: .power_repl_history in the working directory)",
    )
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=0)
    remove_history_duplicates: bool = Field(default=False)
    no_stdout: bool = Field(default=False)
    timeout: float | None = Field(default=None, gt=0)

    def handshake(self) -> HandshakeFrame:
        """The handshake frame announcing this configuration to the server."""
        return HandshakeFrame(
            prompt=self.prompt,
            no_stdout=self.no_stdout,
            history=str(self.history) if self.history else None,
            history_size=self.history_size,
            timeout=self.timeout,
            remove_history_duplicates=self.remove_history_duplicates,
        )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for power-repl.

    Loads from YAML file and supports environment variable overrides.
    """

    model_config = {
        "env_prefix": "POWERREPL_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    serve: ServeConfig = Field(default_factory=ServeConfig)
    connect: ConnectConfig = Field(default_factory=ConnectConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + environment variables.

    Priority: init values (the YAML file) > env vars > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.debug("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
