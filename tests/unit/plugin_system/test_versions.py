"""Unit tests for the Rudder, plugin and archive version model."""

from pathlib import Path

import pytest

from rudder_package.plugin_system.versions import (
    ArchiveVersion,
    PluginVersion,
    ReleaseStage,
    RudderVersion,
)
from rudder_package.utils.exceptions import VersionParseError


@pytest.mark.parametrize(
    "value, expected",
    [
        ("8.0.1", (8, 0, 1, ReleaseStage.FINAL, 0)),
        ("8.1.0~alpha1", (8, 1, 0, ReleaseStage.ALPHA, 1)),
        ("8.1.0~beta2", (8, 1, 0, ReleaseStage.BETA, 2)),
        ("8.1.0~rc3", (8, 1, 0, ReleaseStage.RC, 3)),
        ("7.3.12~git202310101010", (7, 3, 12, ReleaseStage.FINAL, 0)),
    ],
)
def test_parse_rudder_version(value, expected) -> None:
    """Test parsing Rudder versions with their suffixes."""
    version = RudderVersion.parse(value)
    assert (version.major, version.minor, version.patch, version.stage, version.stage_number) == expected
    assert str(version) == value


@pytest.mark.parametrize("value", ["8.1", "8.1.x", "v8.1.0", "8.1.0~gamma1", "8.1.0-rc1", ""])
def test_parse_rudder_version_rejects_malformed(value: str) -> None:
    """Test that malformed Rudder versions are rejected."""
    with pytest.raises(VersionParseError) as exc_info:
        RudderVersion.parse(value)
    assert exc_info.value.version == value


def test_rudder_version_is_a_value_error() -> None:
    """Parse errors can be caught as plain ValueError."""
    with pytest.raises(ValueError):
        RudderVersion.parse("not-a-version")


def test_rudder_version_ordering() -> None:
    """Test that pre-releases sort before the final release."""
    ordered = ["8.0.9", "8.1.0~alpha1", "8.1.0~alpha2", "8.1.0~beta1", "8.1.0~rc1", "8.1.0", "8.1.1"]
    versions = [RudderVersion.parse(v) for v in ordered]
    assert sorted(reversed(versions)) == versions
    assert RudderVersion.parse("8.1.0~git1234") == RudderVersion.parse("8.1.0")


@pytest.mark.parametrize(
    "plugin_target, running, compatible",
    [
        ("8.1.0", "8.1.5", True),
        ("8.1.0~rc1", "8.1.0", True),
        ("8.1.3", "8.1.0~beta2", True),
        ("8.1.0", "8.2.0", False),
        ("8.1.0", "7.1.0", False),
    ],
)
def test_is_compatible(plugin_target: str, running: str, compatible: bool) -> None:
    """Test that compatibility follows the major and minor line."""
    assert RudderVersion.parse(plugin_target).is_compatible(RudderVersion.parse(running)) is compatible
    assert RudderVersion.parse(plugin_target).is_compatible(running) is compatible


def test_line() -> None:
    assert RudderVersion.parse("8.1.0~rc2").line == "8.1"


def test_str_without_raw() -> None:
    """Test formatting a version built from its parts."""
    assert str(RudderVersion(8, 1, 0)) == "8.1.0"
    assert str(RudderVersion(8, 1, 0, ReleaseStage.BETA, 2)) == "8.1.0~beta2"


def test_from_path_key_value(tmp_path: Path) -> None:
    """Test reading a rudder_version= version file."""
    version_file = tmp_path / "rudder-server-version"
    version_file.write_text("rudder_version=8.1.2\nother=1\n")
    assert RudderVersion.from_path(version_file) == RudderVersion.parse("8.1.2")


def test_from_path_bare_version(tmp_path: Path) -> None:
    """Test reading a version file holding only the version."""
    version_file = tmp_path / "rudder-server-version"
    version_file.write_text("8.2.0~beta1\n")
    assert RudderVersion.from_path(version_file).stage is ReleaseStage.BETA


def test_from_path_missing_file(tmp_path: Path) -> None:
    """Test that a missing version file is an error."""
    with pytest.raises(VersionParseError, match="Could not read the Rudder version"):
        RudderVersion.from_path(tmp_path / "missing")


def test_parse_plugin_version() -> None:
    """Test parsing plugin versions."""
    assert PluginVersion.parse("2.1") == PluginVersion(2, 1, False)
    assert PluginVersion.parse("2.1-nightly") == PluginVersion(2, 1, True)
    assert str(PluginVersion.parse("2.1-nightly")) == "2.1-nightly"


@pytest.mark.parametrize("value", ["2", "2.1.0", "2.1-beta", "2.1-nightly-x", "a.b"])
def test_parse_plugin_version_rejects_malformed(value: str) -> None:
    """Test that malformed plugin versions are rejected."""
    with pytest.raises(VersionParseError):
        PluginVersion.parse(value)


def test_plugin_version_ordering() -> None:
    """A nightly orders below the release of the same major.minor."""
    assert PluginVersion.parse("2.1-nightly") < PluginVersion.parse("2.1")
    assert PluginVersion.parse("2.1") < PluginVersion.parse("2.2-nightly")
    assert PluginVersion.parse("2.10") > PluginVersion.parse("2.9")
    assert max(PluginVersion.parse(v) for v in ["2.1", "2.1-nightly", "1.9"]) == PluginVersion.parse("2.1")


def test_parse_archive_version() -> None:
    """Test splitting an archive version into Rudder and plugin parts."""
    version = ArchiveVersion.parse("8.1.0~rc1-2.1-nightly")
    assert version.rudder_version == RudderVersion.parse("8.1.0~rc1")
    assert version.plugin_version == PluginVersion(2, 1, True)
    assert str(version) == "8.1.0~rc1-2.1-nightly"


@pytest.mark.parametrize("value", ["8.1.0", "8.1.0-", "8.1-2.1", "8.1.0-2"])
def test_parse_archive_version_rejects_malformed(value: str) -> None:
    """Test that malformed archive versions are rejected."""
    with pytest.raises(VersionParseError):
        ArchiveVersion.parse(value)
