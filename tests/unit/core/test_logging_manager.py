"""Unit tests for the Logging Manager."""

import json
import logging
import logging.handlers
from pathlib import Path

import pytest

from rudder_package.core.config_manager import LogFileConfig, LoggingConfig
from rudder_package.core.logging_manager import LoggingManager, configure_logging, get_logger


@pytest.fixture
def file_config(tmp_path: Path):
    def _config(fmt: str = "text", level: str = "INFO") -> LoggingConfig:
        return LoggingConfig(
            level=level,
            format=fmt,
            file=LogFileConfig(enabled=True, path=tmp_path / "logs" / "rudder-pkg.log"),
        )

    return _config


def test_level() -> None:
    """Test the effective log level."""
    assert LoggingManager(LoggingConfig(level="warning")).level == logging.WARNING
    assert LoggingManager(LoggingConfig(level="ERROR"), debug=True).level == logging.DEBUG
    assert LoggingManager().level == logging.INFO


def test_initialize_installs_handlers(file_config, tmp_path: Path) -> None:
    """Test that initializing adds the file handler and shutdown removes it."""
    manager = configure_logging(file_config())
    try:
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
        assert (tmp_path / "logs").is_dir()
    finally:
        manager.shutdown()

    assert not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logging.getLogger().handlers)


def test_text_output(file_config, tmp_path: Path) -> None:
    """Test the text log format."""
    manager = configure_logging(file_config("text"))
    try:
        get_logger("rudder_package.test").info("Plugin installed", plugin="cis", files=3)
        get_logger("rudder_package.test").debug("Hidden detail")
    finally:
        manager.shutdown()

    content = (tmp_path / "logs" / "rudder-pkg.log").read_text()
    assert "Plugin installed" in content
    assert "plugin=cis" in content
    assert "files=3" in content
    assert "Hidden detail" not in content


def test_json_output(file_config, tmp_path: Path) -> None:
    """Test the JSON log format."""
    manager = configure_logging(file_config("json"))
    try:
        get_logger("rudder_package.test").warning("Skipping entry", plugin="cis")
    finally:
        manager.shutdown()

    record = json.loads((tmp_path / "logs" / "rudder-pkg.log").read_text().splitlines()[-1])
    assert record["message"] == "Skipping entry"
    assert record["plugin"] == "cis"
    assert record["levelname"] == "WARNING"
    assert record["name"] == "rudder_package.test"


def test_debug_flag(file_config, tmp_path: Path) -> None:
    """Test that the debug flag lowers the level."""
    manager = configure_logging(file_config("text"), debug=True)
    try:
        get_logger("rudder_package.test").debug("Package step", step="preinst")
    finally:
        manager.shutdown()

    assert "Package step" in (tmp_path / "logs" / "rudder-pkg.log").read_text()


def test_reinitialize_replaces_handlers(file_config) -> None:
    """Test that initializing twice does not duplicate handlers."""
    manager = LoggingManager(file_config())
    manager.initialize()
    count = len(logging.getLogger().handlers)
    manager.initialize()
    try:
        assert len(logging.getLogger().handlers) == count
    finally:
        manager.shutdown()
