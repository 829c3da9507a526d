"""Version model for the Rudder host and its plugins.

Three version kinds appear in plugin metadata:

* the host version ``major.minor.patch[~suffix]`` (``8.0.0~rc1``),
* the plugin version ``major.minor[-nightly]`` (``2.2-nightly``),
* the archive version, both joined with a dash (``8.0.0~rc1-2.2-nightly``).

Plugins target a host ``major.minor`` line, patch level and release stage of
the host are irrelevant to compatibility.
"""

from __future__ import annotations

import enum
import functools
import pathlib
import re
from dataclasses import dataclass, field
from typing import Tuple, Union

from rudder_package.utils.exceptions import VersionParseError

_RUDDER_VERSION_RE = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)(?P<suffix>.*)$")
_STAGE_RES = (
    ("alpha", re.compile(r"^~alpha(?P<number>\d+).*$")),
    ("beta", re.compile(r"^~beta(?P<number>\d+).*$")),
    ("rc", re.compile(r"^~rc(?P<number>\d+).*$")),
)
_GIT_RE = re.compile(r"^~git\d+")
_PLUGIN_VERSION_RE = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)(?P<nightly>-nightly)?$")
_VERSION_FILE_RE = re.compile(r"^\s*rudder_version\s*=\s*(?P<version>\S+)\s*$", re.MULTILINE)


class ReleaseStage(enum.IntEnum):
    """Release stage of a host version, in release order."""

    ALPHA = 0
    BETA = 1
    RC = 2
    FINAL = 3


@functools.total_ordering
@dataclass(frozen=True)
class RudderVersion:
    """A host application version.

    Attributes:
        major: Major version number
        minor: Minor version number
        patch: Patch version number
        stage: Release stage
        stage_number: Ordinal of the pre-release (0 for final releases)
        raw: The string the version was parsed from
    """

    major: int
    minor: int
    patch: int
    stage: ReleaseStage = ReleaseStage.FINAL
    stage_number: int = 0
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, value: str) -> RudderVersion:
        """Parse a host version string.

        Args:
            value: A string such as ``8.0.1``, ``8.1.0~beta2`` or ``8.0.0~git202310``

        Returns:
            The parsed version

        Raises:
            VersionParseError: If the string does not follow the grammar
        """
        match = _RUDDER_VERSION_RE.match(value)
        if match is None:
            raise VersionParseError(f"Unparsable Rudder version '{value}'", version=value)

        stage, stage_number = cls._parse_suffix(match.group("suffix"), value)
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            stage=stage,
            stage_number=stage_number,
            raw=value,
        )

    @staticmethod
    def _parse_suffix(suffix: str, value: str) -> Tuple[ReleaseStage, int]:
        if not suffix:
            return ReleaseStage.FINAL, 0

        for stage_name, regex in _STAGE_RES:
            match = regex.match(suffix)
            if match is not None:
                return ReleaseStage[stage_name.upper()], int(match.group("number"))

        # Nightly builds of the host are equivalent to the release they track
        if _GIT_RE.match(suffix):
            return ReleaseStage.FINAL, 0

        raise VersionParseError(f"Unparsable Rudder version mode '{suffix}'", version=value)

    @classmethod
    def from_path(cls, path: Union[str, pathlib.Path]) -> RudderVersion:
        """Read the running host version from its version file.

        The file holds either a ``rudder_version=<version>`` line or the bare
        version string.

        Raises:
            VersionParseError: If the file cannot be read or holds no valid version
        """
        path = pathlib.Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise VersionParseError(
                f"Could not read the Rudder version from {path}: {e}", path=str(path)
            ) from e

        match = _VERSION_FILE_RE.search(content)
        value = match.group("version") if match else content.strip()
        return cls.parse(value)

    def is_compatible(self, running: Union[RudderVersion, str]) -> bool:
        """Whether a plugin built for this version can run on ``running``."""
        if isinstance(running, str):
            running = RudderVersion.parse(running)
        return (self.major, self.minor) == (running.major, running.minor)

    @property
    def line(self) -> str:
        """The ``major.minor`` line this version belongs to."""
        return f"{self.major}.{self.minor}"

    def _sort_key(self) -> Tuple[int, int, int, int, int]:
        return self.major, self.minor, self.patch, int(self.stage), self.stage_number

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RudderVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        if self.raw:
            return self.raw
        if self.stage is ReleaseStage.FINAL:
            return f"{self.major}.{self.minor}.{self.patch}"
        return f"{self.major}.{self.minor}.{self.patch}~{self.stage.name.lower()}{self.stage_number}"


@functools.total_ordering
@dataclass(frozen=True)
class PluginVersion:
    """A plugin version; a nightly orders below the release of the same major.minor."""

    major: int
    minor: int
    nightly: bool = False

    @classmethod
    def parse(cls, value: str) -> PluginVersion:
        """Parse a plugin version string.

        Raises:
            VersionParseError: If the string is not ``major.minor[-nightly]``
        """
        match = _PLUGIN_VERSION_RE.match(value)
        if match is None:
            raise VersionParseError(f"Unparsable plugin version '{value}'", version=value)
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            nightly=match.group("nightly") is not None,
        )

    def _sort_key(self) -> Tuple[int, int, int]:
        return self.major, self.minor, 0 if self.nightly else 1

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PluginVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        suffix = "-nightly" if self.nightly else ""
        return f"{self.major}.{self.minor}{suffix}"


@dataclass(frozen=True)
class ArchiveVersion:
    """Version of an rpkg: the host version it targets and the plugin version."""

    rudder_version: RudderVersion
    plugin_version: PluginVersion

    @classmethod
    def parse(cls, value: str) -> ArchiveVersion:
        """Parse ``<host version>-<plugin version>``, split on the first dash.

        Raises:
            VersionParseError: If either part is malformed or there is no dash
        """
        rudder_part, sep, plugin_part = value.partition("-")
        if not sep:
            raise VersionParseError(f"Unparsable rpkg version '{value}'", version=value)
        return cls(
            rudder_version=RudderVersion.parse(rudder_part),
            plugin_version=PluginVersion.parse(plugin_part),
        )

    def __str__(self) -> str:
        return f"{self.rudder_version}-{self.plugin_version}"
