"""
Configuration loader for the docsync replication server.

This module provides configuration management with:
- Multiple configuration sources (files, dicts, env vars)
- Schema validation through pydantic
- Type coercion
- Configuration merging by priority
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Literal
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("docsync.config")

ENV_PREFIX = "DOCSYNC_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    path: Path = Field(default_factory=lambda: Path.home() / ".docsync" / "documents.db")
    timeout: float = 30.0
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()

    @field_validator('journal_mode', 'synchronous')
    @classmethod
    def validate_pragma(cls, v):
        """Pragma values are interpolated into SQL, so keep them to bare words."""
        if not v.isalpha():
            raise ValueError(f"Invalid pragma value: {v}")
        return v.upper()


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: Literal["json", "console"] = "console"
    directory: Optional[Path] = None
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class ReplicationConfig(BaseModel):
    """Replication engine configuration."""
    store: Literal["sqlite", "memory"] = "sqlite"
    default_pull_limit: int = Field(default=10, gt=0)
    max_pull_limit: int = Field(default=1000, gt=0)

    @field_validator('max_pull_limit')
    @classmethod
    def validate_max_limit(cls, v, info):
        default = info.data.get('default_pull_limit')
        if default is not None and v < default:
            raise ValueError("max_pull_limit must be >= default_pull_limit")
        return v


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = Field(default=8080, gt=0, lt=65536)
    route_prefix: str = "/api/replicate"
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_max_age: int = 3600

    @field_validator('route_prefix')
    @classmethod
    def normalize_prefix(cls, v):
        return "/" + v.strip("/")

    @field_validator('cors_allowed_origins', mode='before')
    @classmethod
    def parse_origins(cls, v):
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v


class DocSyncConfig(BaseModel):
    """Main docsync configuration."""
    app_name: str = "docsync"
    debug: bool = False

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    replication: ReplicationConfig = Field(default_factory=ReplicationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = ConfigDict(validate_assignment=True)


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration loader.

        Args:
            environ: Environment mapping to read DOCSYNC_* variables from
                (defaults to os.environ)
        """
        self._sources: List[ConfigSource] = []
        self._config: Optional[DocSyncConfig] = None
        self._environ = os.environ if environ is None else environ

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> DocSyncConfig:
        """
        Load configuration from all sources.

        Lower priority sources are applied first so higher ones override
        them, then environment variables, then ``overrides``.

        Args:
            overrides: Explicit settings (command line flags) that win over
                every source and the environment

        Returns:
            Merged configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in sorted(self._sources, key=lambda s: s.priority):
            merged_data = self._deep_merge(merged_data, self._load_source(source))

        merged_data = self._deep_merge(merged_data, self._load_env_vars())
        if overrides:
            merged_data = self._deep_merge(merged_data, overrides)

        try:
            self._config = DocSyncConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")

            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        try:
            if source.source_type == "json":
                data = json.loads(content)
            elif source.source_type == "yaml":
                data = yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                data = toml.loads(content)
            else:
                raise ConfigurationError(f"Unknown source type: {source.source_type}")
        except (ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigurationError(
                f"Failed to parse {source.path}: {e}", cause=e
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {source.path} must be a mapping")
        return data

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load DOCSYNC_SECTION__KEY=value variables into a nested dict."""
        result: Dict[str, Any] = {}

        for key, value in self._environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith("~"):
            return Path(value).expanduser()

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> DocSyncConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> DocSyncConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Overrides applied after files and environment variables

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader()

    default_paths = [
        Path.home() / ".docsync" / "config.yaml",
        Path("/etc/docsync/config.yaml"),
        Path("./docsync.yaml"),
        Path("./docsync.toml"),
        Path("./docsync.json"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    return loader.load(overrides=extra_config)


__all__ = [
    'DocSyncConfig',
    'DatabaseConfig',
    'LoggingConfig',
    'ReplicationConfig',
    'ServerConfig',
    'ConfigLoader',
    'load_config',
]
