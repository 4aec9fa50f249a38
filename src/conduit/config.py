"""Configuration schema for conduit."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from conduit.exceptions import ConfigError
from conduit.workflow.settings import EngineSettings


class LoggingSettings(BaseModel):
    """Logging configuration.

    Attributes:
        level: Minimum log level.
        format: ``console`` for human output, ``json`` for log shippers.
    """

    level: Literal["debug", "info", "warning", "error"] = "info"
    format: Literal["console", "json"] = "console"


class ConduitConfig(BaseModel):
    """Complete conduit configuration.

    Attributes:
        version: Config schema version.
        engine: Engine settings.
        tools: Tool bindings, ``name -> "module:function"``.
        definitions: Pipeline definition files or directories to load.
        logging: Logging settings.

    Example:
        >>> config = ConduitConfig(tools={"publish": "myapp.tools:publish"})
        >>> config.engine.max_subflow_depth
        5
    """

    version: str = "1.0"
    engine: EngineSettings = Field(default_factory=EngineSettings)
    tools: dict[str, str] = Field(default_factory=dict)
    definitions: list[Path] = Field(default_factory=list)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("tools")
    @classmethod
    def validate_tool_bindings(cls, v: dict[str, str]) -> dict[str, str]:
        """Ensure bindings look like import paths."""
        for name, path in v.items():
            if "." not in path and ":" not in path:
                msg = f"Tool '{name}' binding must be 'module:function', got '{path}'"
                raise ValueError(msg)
        return v

    def to_yaml(self) -> str:
        """Serialize the config to YAML.

        Returns:
            YAML string representation.
        """
        data = self.model_dump(mode="json")
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def save(self, path: Path) -> None:
        """Save the config to a YAML file."""
        path.write_text(self.to_yaml())

    @classmethod
    def from_yaml(cls, yaml_content: str, *, config_path: Path | None = None) -> ConduitConfig:
        """Parse config from YAML content.

        Relative ``definitions`` paths resolve against the config file's
        directory when ``config_path`` is given.

        Raises:
            ConfigError: If the YAML is invalid or fails validation.
        """
        try:
            data: Any = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML: {e}"
            raise ConfigError(msg, config_path=config_path) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            msg = "Config YAML must be a mapping"
            raise ConfigError(msg, config_path=config_path)

        try:
            config = cls.model_validate(data)
        except ValueError as e:
            msg = f"Invalid config: {e}"
            raise ConfigError(msg, config_path=config_path) from e

        if config_path is not None:
            base = config_path.parent
            config.definitions = [p if p.is_absolute() else base / p for p in config.definitions]
        return config

    @classmethod
    def load(cls, path: Path) -> ConduitConfig:
        """Load config from a YAML file.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise ConfigError(msg, config_path=path)
        return cls.from_yaml(path.read_text(), config_path=path)

    @classmethod
    def default(cls) -> ConduitConfig:
        """Create a default configuration."""
        return cls()
