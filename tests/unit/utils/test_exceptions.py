"""Unit tests for the exceptions module."""

import pytest

from rudder_package.utils.exceptions import (
    ConfigurationError,
    DatabaseError,
    IncompatiblePluginError,
    InstallationError,
    MalformedMetadataError,
    MetadataError,
    MissingDependencyError,
    MissingMetadataError,
    PackageFormatError,
    PluginError,
    PluginNotFoundError,
    PluginNotInstalledError,
    RepositoryError,
    RudderPackageError,
    ScriptExecutionError,
    SignatureError,
    UnmappedArchiveError,
    VersionParseError,
    WebappError,
)


def test_rudder_package_error():
    """Test the base RudderPackageError class."""
    error = RudderPackageError("Test error message")
    assert str(error) == "Test error message"
    assert error.message == "Test error message"
    assert error.details == {}

    # Keyword arguments become details, None values are dropped
    error = RudderPackageError("With details", details={"key": "value"}, number=123, empty=None)
    assert error.details == {"key": "value", "number": 123}


def test_configuration_error():
    """Test the ConfigurationError class."""
    error = ConfigurationError("Bad value", config_key="repository.url")
    assert error.config_key == "repository.url"
    assert error.details["config_key"] == "repository.url"


def test_package_format_errors():
    """Test the rpkg format error hierarchy."""
    error = MissingMetadataError("No metadata", path="/tmp/a.rpkg", entry="metadata")
    assert isinstance(error, MetadataError)
    assert isinstance(error, PackageFormatError)
    assert error.path == "/tmp/a.rpkg"
    assert error.entry == "metadata"

    assert issubclass(MalformedMetadataError, MetadataError)
    assert not issubclass(MalformedMetadataError, MissingMetadataError)
    assert issubclass(UnmappedArchiveError, PackageFormatError)
    assert not issubclass(UnmappedArchiveError, MetadataError)


def test_version_parse_error():
    """Test the VersionParseError class."""
    error = VersionParseError("Unparsable", version="8.x")
    assert error.version == "8.x"
    assert isinstance(error, ValueError)
    assert isinstance(error, RudderPackageError)


def test_plugin_errors():
    """Test the plugin error hierarchy."""
    error = IncompatiblePluginError(
        "Incompatible", plugin_name="cis", plugin_version="7.3.0", webapp_version="8.1.0"
    )
    assert isinstance(error, PluginError)
    assert error.plugin_name == "cis"
    assert error.details == {"plugin_name": "cis", "plugin_version": "7.3.0", "webapp_version": "8.1.0"}

    error = MissingDependencyError("Missing", plugin_name="cis", missing=["binary 'zip'"])
    assert error.missing == ["binary 'zip'"]
    assert MissingDependencyError("Missing").missing == []

    error = InstallationError("Failed", plugin_name="cis", step="postinst")
    assert error.step == "postinst"

    error = ScriptExecutionError("Cannot run", plugin_name="cis", script="prerm")
    assert error.script == "prerm"

    for error_class in (PluginNotInstalledError, PluginNotFoundError):
        error = error_class("Not here", plugin_name="cis")
        assert isinstance(error, PluginError)
        assert error.plugin_name == "cis"


@pytest.mark.parametrize("error_class", [DatabaseError, SignatureError, WebappError])
def test_path_errors(error_class):
    """Test the errors carrying a file path."""
    error = error_class("Failure", path="/var/rudder/packages/index.json")
    assert isinstance(error, RudderPackageError)
    assert error.path == "/var/rudder/packages/index.json"
    assert error.details["path"] == "/var/rudder/packages/index.json"


def test_repository_error():
    """Test the RepositoryError class."""
    error = RepositoryError("Not found", url="https://example.com/a", status_code=404)
    assert error.url == "https://example.com/a"
    assert error.status_code == 404
    assert RepositoryError("Offline").status_code is None
