"""Unit tests for the Configuration Manager."""

import json
from pathlib import Path

import pytest
import yaml

from rudder_package.core.config_manager import (
    ConfigManager,
    Configuration,
    RepositoryConfig,
    load_configuration,
)
from rudder_package.utils.exceptions import ConfigurationError


def test_default_values() -> None:
    """Test that Configuration provides the default Rudder locations."""
    config = Configuration()

    assert config.paths.database == Path("/var/rudder/packages/index.json")
    assert config.paths.packages_folder == Path("/var/rudder/packages")
    assert config.repository.url == "https://download.rudder.io/plugins"
    assert config.repository.username is None
    assert config.webapp.restart_command == ["systemctl", "restart", "rudder-jetty"]
    assert config.logging.level == "INFO"
    assert config.logging.file.enabled is False


def test_repository_url_validation() -> None:
    """Test that repository URLs are validated and normalized."""
    assert RepositoryConfig(url="https://example.com/plugins/").url == "https://example.com/plugins"
    with pytest.raises(ValueError, match="must start with http"):
        RepositoryConfig(url="ftp://example.com")
    with pytest.raises(ValueError, match="timeout must be positive"):
        RepositoryConfig(timeout=0)


def test_missing_file_uses_defaults(tmp_path: Path, clean_env) -> None:
    """Test that a missing config file falls back to defaults."""
    manager = ConfigManager(config_path=tmp_path / "missing.yaml")
    config = manager.load()

    assert not manager.loaded_from_file
    assert config == Configuration()


def test_yaml_file(tmp_path: Path, clean_env) -> None:
    """Test that a YAML config file is merged over the defaults."""
    config_file = tmp_path / "rudder-pkg.yaml"
    config_file.write_text(yaml.safe_dump({
        "repository": {"username": "alice", "password": "secret"},
        "paths": {"database": str(tmp_path / "index.json")},
        "logging": {"level": "debug"},
    }))

    manager = ConfigManager(config_path=config_file)
    config = manager.load()

    assert manager.loaded_from_file
    assert manager.config_path == config_file
    assert config.repository.username == "alice"
    assert config.repository.url == "https://download.rudder.io/plugins"
    assert config.paths.database == tmp_path / "index.json"
    assert config.paths.packages_folder == Path("/var/rudder/packages")
    assert config.logging.level == "DEBUG"


def test_json_file(tmp_path: Path, clean_env) -> None:
    """Test that a JSON config file is accepted."""
    config_file = tmp_path / "rudder-pkg.json"
    config_file.write_text(json.dumps({"webapp": {"restart_command": []}}))

    config = load_configuration(config_file)
    assert config.webapp.restart_command == []


def test_empty_file(tmp_path: Path, clean_env) -> None:
    """Test that an empty config file means defaults."""
    config_file = tmp_path / "rudder-pkg.yaml"
    config_file.write_text("")
    assert ConfigManager(config_path=config_file).load() == Configuration()


@pytest.mark.parametrize(
    "file_name, content, message",
    [
        ("rudder-pkg.yaml", "repository: [unclosed", "Error parsing config file"),
        ("rudder-pkg.json", "{", "Error parsing config file"),
        ("rudder-pkg.toml", "a = 1", "Unsupported config file format"),
        ("rudder-pkg.yaml", "- a\n- b\n", "must contain a mapping"),
        ("rudder-pkg.yaml", "logging:\n  level: LOUD\n", "Invalid configuration: logging.level"),
    ],
)
def test_invalid_file(tmp_path: Path, clean_env, file_name: str, content: str, message: str) -> None:
    """Test that unreadable or invalid config files are rejected."""
    config_file = tmp_path / file_name
    config_file.write_text(content)

    with pytest.raises(ConfigurationError, match=message):
        ConfigManager(config_path=config_file).load()


def test_env_overrides(tmp_path: Path, clean_env, monkeypatch) -> None:
    """Test that environment variables override the config file."""
    config_file = tmp_path / "rudder-pkg.yaml"
    config_file.write_text(yaml.safe_dump({"repository": {"timeout": 10}}))

    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__TIMEOUT", "60")
    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__PROXY", "http://proxy:3128")
    monkeypatch.setenv("RUDDER_PKG_LOGGING__FILE__ENABLED", "yes")
    monkeypatch.setenv("RUDDER_PKG_LOGGING__FORMAT", "json")

    config = ConfigManager(config_path=config_file).load()

    assert config.repository.timeout == 60
    assert config.repository.proxy == "http://proxy:3128"
    assert config.logging.file.enabled is True
    assert config.logging.format == "json"


def test_custom_env_prefix(tmp_path: Path, monkeypatch) -> None:
    """Test a custom environment variable prefix."""
    monkeypatch.setenv("RPKG_TEST_REPOSITORY__USERNAME", "bob")
    config = ConfigManager(config_path=tmp_path / "missing.yaml", env_prefix="RPKG_TEST_").load()
    assert config.repository.username == "bob"


def test_env_values_follow_field_types(tmp_path: Path, clean_env, monkeypatch) -> None:
    """Test that environment strings are converted by field type, not by content."""
    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__USERNAME", "yes")
    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__PASSWORD", "123456")
    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__TIMEOUT", "1.5")
    monkeypatch.setenv("RUDDER_PKG_LOGGING__FILE__ENABLED", "off")
    monkeypatch.setenv("RUDDER_PKG_LOGGING__FILE__BACKUP_COUNT", "3")

    config = ConfigManager(config_path=tmp_path / "missing.yaml").load()

    assert config.repository.username == "yes"
    assert config.repository.password == "123456"
    assert config.repository.timeout == 1.5
    assert config.logging.file.enabled is False
    assert config.logging.file.backup_count == 3


def test_invalid_env_value(tmp_path: Path, clean_env, monkeypatch) -> None:
    """Test that an environment value of the wrong type is a configuration error."""
    monkeypatch.setenv("RUDDER_PKG_REPOSITORY__TIMEOUT", "soon")
    with pytest.raises(ConfigurationError, match="repository.timeout"):
        ConfigManager(config_path=tmp_path / "missing.yaml").load()
