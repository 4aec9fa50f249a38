"""Server configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class ServerSettings(BaseSettings):
    """Configuration for the conduit HTTP server.

    Environment variables:
        CONDUIT_HOST: Host to bind (127.0.0.1 for security)
        CONDUIT_PORT: Port to bind
        CONDUIT_CONFIG: Path to a conduit.yaml config file
    """

    host: str = Field(
        default="127.0.0.1",
        validation_alias="CONDUIT_HOST",
        description="Host to bind (127.0.0.1 for security)",
    )
    port: int = Field(
        default=8400,
        validation_alias="CONDUIT_PORT",
        description="Port to bind",
    )
    config_path: Path | None = Field(
        default=None,
        validation_alias="CONDUIT_CONFIG",
        description="Path to a conduit.yaml config file",
    )

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }
