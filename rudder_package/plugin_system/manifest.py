from __future__ import annotations

import enum
import json
from typing import Annotated, Any, Dict, List, Optional

import pydantic
from pydantic import ConfigDict, Field, PlainSerializer, PlainValidator, field_validator, model_validator

from rudder_package.plugin_system.versions import ArchiveVersion
from rudder_package.utils.exceptions import MalformedMetadataError

SCRIPTS_ARCHIVE = "scripts.txz"
ARCHIVE_SUFFIX = ".txz"


def _parse_archive_version(value: Any) -> ArchiveVersion:
    if isinstance(value, ArchiveVersion):
        return value
    if not isinstance(value, str):
        raise ValueError("version must be a string")
    return ArchiveVersion.parse(value)


ArchiveVersionField = Annotated[
    ArchiveVersion,
    PlainValidator(_parse_archive_version),
    PlainSerializer(str, return_type=str),
]


class PackageType(str, enum.Enum):
    PLUGIN = "plugin"


class Dependencies(pydantic.BaseModel):
    """Dependencies declared by a plugin.

    ``plugins`` lists other Rudder plugins; the other lists are system
    requirements checked on the host.
    """

    plugins: List[str] = Field(default_factory=list)
    binary: List[str] = Field(default_factory=list)
    python: List[str] = Field(default_factory=list)
    apt: List[str] = Field(default_factory=list)
    rpm: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_plugin_list(cls, data: Any) -> Any:
        """A bare list is shorthand for plugin dependencies."""
        if isinstance(data, list):
            return {"plugins": data}
        return data

    def is_empty(self) -> bool:
        return not (self.plugins or self.binary or self.python or self.apt or self.rpm)


class PluginMetadata(pydantic.BaseModel):
    """Content of the ``metadata`` entry of an rpkg.

    JSON keys use the dashed names of the on-disk format (``build-date``,
    ``jar-files``); the ``content`` mapping keeps its insertion order, which
    is the order bundles are extracted in.
    """

    model_config = ConfigDict(populate_by_name=True)

    package_type: PackageType = Field(default=PackageType.PLUGIN, alias="type")
    name: str
    version: ArchiveVersionField
    build_date: Optional[str] = Field(default=None, alias="build-date")
    build_commit: Optional[str] = Field(default=None, alias="build-commit")
    depends: Optional[Dependencies] = None
    content: Dict[str, str] = Field(default_factory=dict)
    jar_files: Optional[List[str]] = Field(default=None, alias="jar-files")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"Invalid plugin name '{v}'")
        return v

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: Dict[str, str]) -> Dict[str, str]:
        for archive, destination in v.items():
            if not archive.endswith(ARCHIVE_SUFFIX):
                raise ValueError(f"Content entry '{archive}' is not a {ARCHIVE_SUFFIX} bundle")
            if not destination.startswith("/"):
                raise ValueError(f"Destination of '{archive}' must be an absolute path")
        return v

    @classmethod
    def from_json(cls, text: str, path: Optional[str] = None) -> PluginMetadata:
        """Parse metadata JSON.

        Args:
            text: The JSON document
            path: The rpkg the document comes from, for error reporting

        Raises:
            MalformedMetadataError: If the text is not JSON or does not match the schema
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedMetadataError(
                f"Failed to parse {path or 'rpkg'} metadata: {e}", path=path, entry="metadata"
            ) from e
        return cls.from_dict(data, path=path)

    @classmethod
    def from_dict(cls, data: Any, path: Optional[str] = None) -> PluginMetadata:
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise MalformedMetadataError(
                f"Invalid {path or 'rpkg'} metadata: {e}", path=path, entry="metadata"
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @property
    def rudder_version(self):
        return self.version.rudder_version

    @property
    def plugin_version(self):
        return self.version.plugin_version
