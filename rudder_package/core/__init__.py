from rudder_package.core.config_manager import (
    ConfigManager,
    Configuration,
    LoggingConfig,
    PathsConfig,
    RepositoryConfig,
    WebappConfig,
    load_configuration,
)
from rudder_package.core.logging_manager import LoggingManager, configure_logging, get_logger

__all__ = [
    "ConfigManager",
    "Configuration",
    "LoggingConfig",
    "PathsConfig",
    "RepositoryConfig",
    "WebappConfig",
    "load_configuration",
    "LoggingManager",
    "configure_logging",
    "get_logger",
]
