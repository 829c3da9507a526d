from __future__ import annotations

import json
import os
import pathlib
from copy import deepcopy
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from rudder_package.utils.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = pathlib.Path("/opt/rudder/etc/rudder-pkg/rudder-pkg.yaml")


class PathsConfig(BaseModel):
    """Filesystem locations used by the package manager."""

    packages_folder: pathlib.Path = Field(
        default=pathlib.Path("/var/rudder/packages"),
        description="Root of the per-plugin lifecycle scripts folders",
    )
    database: pathlib.Path = Field(
        default=pathlib.Path("/var/rudder/packages/index.json"),
        description="Installed package database",
    )
    webapp_xml: pathlib.Path = Field(
        default=pathlib.Path("/opt/rudder/share/webapps/rudder.xml"),
        description="Jetty context file of the Rudder web application",
    )
    rudder_version_file: pathlib.Path = Field(
        default=pathlib.Path("/opt/rudder/share/versions/rudder-server-version"),
        description="File holding the running Rudder version",
    )
    repository_index: pathlib.Path = Field(
        default=pathlib.Path("/var/rudder/tmp/plugins/rpkg.index"),
        description="Local copy of the repository index",
    )
    tmp_folder: pathlib.Path = Field(
        default=pathlib.Path("/var/rudder/tmp/plugins"),
        description="Download and backup folder",
    )
    keyring: pathlib.Path = Field(
        default=pathlib.Path("/opt/rudder/etc/rudder-pkg/rudder_plugins_key.pem"),
        description="PEM file with the trusted signing keys",
    )
    licenses_folder: pathlib.Path = Field(
        default=pathlib.Path("/opt/rudder/etc/plugins/licenses"),
        description="Folder receiving downloaded plugin licenses",
    )


class RepositoryConfig(BaseModel):
    """Remote plugin repository settings."""

    url: str = "https://download.rudder.io/plugins"
    username: Optional[str] = None
    password: Optional[str] = None
    proxy: Optional[str] = None
    timeout: float = 30.0

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Repository URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Repository timeout must be positive")
        return v


class WebappConfig(BaseModel):
    """Host application settings."""

    restart_command: List[str] = Field(
        default_factory=lambda: ["systemctl", "restart", "rudder-jetty"],
        description="Command applying pending classpath changes; empty to skip",
    )


class LogFileConfig(BaseModel):
    enabled: bool = False
    path: pathlib.Path = pathlib.Path("/var/log/rudder/rudder-pkg.log")
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "text"
    file: LogFileConfig = Field(default_factory=LogFileConfig)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v.lower()


class Configuration(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    package manager configuration.
    """

    paths: PathsConfig = Field(default_factory=PathsConfig, description="Filesystem locations")
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig, description="Plugin repository")
    webapp: WebappConfig = Field(default_factory=WebappConfig, description="Host application")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging settings")


class ConfigManager:
    """Configuration loader for the package manager.

    Configuration is built from the schema defaults, merged with a YAML or
    JSON file when one exists, then overridden by environment variables and
    finally validated.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The raw merged configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Names of the applied environment variables
    """

    ENV_NESTING_SEPARATOR = "__"

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = "RUDDER_PKG_"
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        self._config_path = pathlib.Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: List[str] = []

    @property
    def config_path(self) -> pathlib.Path:
        return self._config_path

    @property
    def loaded_from_file(self) -> bool:
        return self._loaded_from_file

    def load(self) -> Configuration:
        """Load and validate the configuration.

        Returns:
            The validated configuration

        Raises:
            ConfigurationError: If the file cannot be parsed or the result is invalid
        """
        self._config = Configuration().model_dump()
        self._loaded_from_file = False
        self._env_vars_applied = []
        self._load_from_file()
        self._apply_env_vars()
        return self._validate_config()

    def _load_from_file(self) -> None:
        """Merge the configuration file into the defaults, if it exists.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        try:
            content = self._config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read config file {self._config_path}: {e}",
                config_key="config_path"
            ) from e

        try:
            if self._config_path.suffix.lower() in (".yaml", ".yml"):
                file_config = yaml.safe_load(content)
            elif self._config_path.suffix.lower() == ".json":
                file_config = json.loads(content) if content.strip() else None
            else:
                raise ConfigurationError(
                    f"Unsupported config file format: {self._config_path.suffix}",
                    config_key="config_path"
                )
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Error parsing config file {self._config_path}: {e}",
                config_key="config_path"
            ) from e

        if file_config is None:
            return
        if not isinstance(file_config, dict):
            raise ConfigurationError(
                f"Config file {self._config_path} must contain a mapping at top level",
                config_key="config_path"
            )
        self._config = self._merge(self._config, file_config)
        self._loaded_from_file = True

    @classmethod
    def _merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = cls._merge(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self) -> None:
        """Apply environment variables to the configuration.

        ``RUDDER_PKG_PATHS__DATABASE=/tmp/index.json`` sets ``paths.database``.
        Values stay strings and are converted to the type of the target field
        on validation.
        """
        for env_name, env_value in sorted(os.environ.items()):
            if not env_name.startswith(self._env_prefix):
                continue

            config_path = env_name[len(self._env_prefix):].lower().split(self.ENV_NESTING_SEPARATOR)
            if not all(config_path):
                continue
            self._set_nested_value(self._config, config_path, env_value)
            self._env_vars_applied.append(env_name)

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary.

        Args:
            config: The configuration dictionary
            path: List of keys forming the path to the value
            value: The value to set
        """
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if not isinstance(config.get(key), dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    def _validate_config(self) -> Configuration:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            return Configuration(**self._config)
        except ValidationError as e:
            errors = e.errors()
            error_details = ", ".join(
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
                for error in errors
            )
            raise ConfigurationError(
                f"Invalid configuration: {error_details}",
                details={"validation_errors": errors}
            ) from e


def load_configuration(config_path: Optional[Union[str, pathlib.Path]] = None) -> Configuration:
    """Shortcut building a ConfigManager and loading it."""
    return ConfigManager(config_path).load()
