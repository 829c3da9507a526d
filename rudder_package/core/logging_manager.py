from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from typing import Any, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from rudder_package.core.config_manager import LoggingConfig


class LoggingManager:
    """Configures process-wide logging for the package manager.

    Records go through structlog and are handed to the stdlib logging
    handlers: a console handler on stderr and, when enabled, a rotating file
    handler. The ``text`` format is rendered by structlog's console renderer,
    the ``json`` format by python-json-logger.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config: Optional[LoggingConfig] = None, debug: bool = False) -> None:
        """Initialize the Logging Manager.

        Args:
            config: The logging section of the configuration.
            debug: Force the DEBUG level regardless of the configured one.
        """
        self._config = config or LoggingConfig()
        self._debug = debug
        self._root_logger: Optional[logging.Logger] = None
        self._console_handler: Optional[logging.Handler] = None
        self._file_handler: Optional[logging.Handler] = None
        self._handlers: List[logging.Handler] = []
        self._initialized = False

    @property
    def level(self) -> int:
        if self._debug:
            return logging.DEBUG
        return self.LOG_LEVELS.get(self._config.level.lower(), logging.INFO)

    def initialize(self) -> None:
        """Install handlers on the root logger and configure structlog."""
        if self._initialized:
            self.shutdown()

        log_level = self.level
        json_output = self._config.format == "json"

        self._root_logger = logging.getLogger()
        self._root_logger.setLevel(log_level)
        for handler in list(self._root_logger.handlers):
            self._root_logger.removeHandler(handler)

        formatter = self._create_json_formatter() if json_output else self._create_console_formatter()

        self._console_handler = logging.StreamHandler(sys.stderr)
        self._console_handler.setLevel(log_level)
        self._console_handler.setFormatter(formatter)
        self._root_logger.addHandler(self._console_handler)
        self._handlers.append(self._console_handler)

        if self._config.file.enabled:
            file_path = self._config.file.path
            os.makedirs(file_path.parent, exist_ok=True)
            self._file_handler = logging.handlers.RotatingFileHandler(
                file_path,
                maxBytes=self._config.file.max_bytes,
                backupCount=self._config.file.backup_count,
            )
            self._file_handler.setLevel(log_level)
            self._file_handler.setFormatter(formatter)
            self._root_logger.addHandler(self._file_handler)
            self._handlers.append(self._file_handler)

        self._configure_structlog(json_output)
        self._initialized = True

    def _create_json_formatter(self) -> logging.Formatter:
        """Create a JSON formatter for log records.

        Returns:
            logging.Formatter: A formatter that outputs logs in JSON format.
        """
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _create_console_formatter(self) -> logging.Formatter:
        return structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            ],
        )

    def _configure_structlog(self, json_output: bool) -> None:
        """Configure structlog for structured logging."""
        processors: List[Any] = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]
        if json_output:
            # Event dict travels as ``extra`` so the JSON formatter emits each key
            processors.append(structlog.stdlib.render_to_log_kwargs)
        else:
            processors.insert(1, structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"))
            processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )

    def shutdown(self) -> None:
        """Detach and close every handler installed by this manager."""
        if not self._initialized:
            return

        for handler in self._handlers:
            if self._root_logger is not None:
                self._root_logger.removeHandler(handler)
            handler.flush()
            handler.close()

        self._handlers = []
        self._console_handler = None
        self._file_handler = None
        self._initialized = False


def configure_logging(config: Optional[LoggingConfig] = None, debug: bool = False) -> LoggingManager:
    """Build and initialize a LoggingManager.

    Args:
        config: The logging section of the configuration.
        debug: Force the DEBUG level.

    Returns:
        The initialized manager.
    """
    manager = LoggingManager(config, debug=debug)
    manager.initialize()
    return manager


def get_logger(name: str) -> Any:
    """Get a structured logger for a component.

    Args:
        name: The name of the component requesting a logger.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)
