"""Rpkg plugin packages.

An rpkg is an ar container holding a ``metadata`` JSON entry and any number
of xz-compressed tar bundles. ``scripts.txz`` carries the lifecycle scripts
and always unpacks into the package scripts root; every other bundle unpacks
into the directory its name maps to in ``metadata.content``.
"""

from __future__ import annotations

import io
import lzma
import os
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Union

from rudder_package.core.logging_manager import get_logger
from rudder_package.plugin_system import container
from rudder_package.plugin_system.manifest import ARCHIVE_SUFFIX, SCRIPTS_ARCHIVE, PluginMetadata
from rudder_package.utils.exceptions import (
    MalformedMetadataError,
    MissingMetadataError,
    PackageFormatError,
    UnmappedArchiveError,
)

logger = get_logger(__name__)


class Rpkg:
    """An rpkg file opened from disk.

    Attributes:
        path: Path to the rpkg file
        metadata: Parsed plugin metadata
        scripts_root: Directory receiving the scripts bundle
    """

    METADATA_ENTRY = "metadata"

    def __init__(
            self,
            path: Union[str, Path],
            metadata: PluginMetadata,
            scripts_root: Union[str, Path],
            entries: List[container.ArEntry]
    ) -> None:
        self.path = Path(path)
        self.metadata = metadata
        self.scripts_root = Path(scripts_root)
        self._entries = entries

    def __repr__(self) -> str:
        return f"Rpkg(path={str(self.path)!r}, name={self.metadata.name!r}, version='{self.metadata.version}')"

    @property
    def name(self) -> str:
        return self.metadata.name

    @classmethod
    def open(cls, path: Union[str, Path], scripts_root: Union[str, Path]) -> Rpkg:
        """Open an rpkg and parse its metadata.

        Args:
            path: Path to the rpkg file
            scripts_root: Directory receiving the scripts bundle

        Returns:
            The opened package

        Raises:
            PackageFormatError: If the file is missing or is not an ar container
            MissingMetadataError: If the container has no metadata entry
            MalformedMetadataError: If the metadata is not valid
        """
        path = Path(path)
        entries = container.read_index(path)

        metadata_entry = next((e for e in entries if e.name == cls.METADATA_ENTRY), None)
        if metadata_entry is None:
            raise MissingMetadataError(f"No metadata found in {path}", path=str(path), entry=cls.METADATA_ENTRY)

        raw = container.read_data(path, metadata_entry)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMetadataError(
                f"Metadata of {path} is not valid UTF-8", path=str(path), entry=cls.METADATA_ENTRY
            ) from e

        metadata = PluginMetadata.from_json(text, path=str(path))
        logger.debug("Opened rpkg", rpkg=str(path), plugin=metadata.name, version=str(metadata.version))
        return cls(path, metadata, scripts_root, entries)

    def nested_archives(self) -> List[str]:
        """Names of the bundles in container order."""
        return [e.name for e in self._entries if e.name.endswith(ARCHIVE_SUFFIX)]

    def destination(self, archive_name: str) -> str:
        """Directory a bundle unpacks into.

        Raises:
            UnmappedArchiveError: If a content bundle has no entry in ``metadata.content``
        """
        if archive_name == SCRIPTS_ARCHIVE:
            return str(self.scripts_root)
        try:
            return self.metadata.content[archive_name]
        except KeyError:
            raise UnmappedArchiveError(
                f"Archive '{archive_name}' of {self.path} has no destination in the metadata",
                path=str(self.path),
                entry=archive_name,
            ) from None

    def _open_bundle(self, archive_name: str) -> Optional[tarfile.TarFile]:
        entry = next((e for e in self._entries if e.name == archive_name), None)
        if entry is None:
            return None

        data = container.read_data(self.path, entry)
        try:
            return tarfile.open(fileobj=io.BytesIO(data), mode="r:xz")
        except (tarfile.TarError, lzma.LZMAError, EOFError) as e:
            raise PackageFormatError(
                f"Cannot read bundle '{archive_name}' of {self.path}: {e}",
                path=str(self.path),
                entry=archive_name,
            ) from e

    def relative_files(self, archive_name: str) -> List[str]:
        """Member paths of a bundle in tar order.

        Directory members keep their trailing slash. An absent bundle yields
        an empty list.

        Raises:
            PackageFormatError: If the bundle cannot be decompressed or read as tar
        """
        tar = self._open_bundle(archive_name)
        if tar is None:
            return []

        try:
            with tar:
                members = tar.getmembers()
        except (tarfile.TarError, lzma.LZMAError, EOFError) as e:
            raise PackageFormatError(
                f"Cannot read bundle '{archive_name}' of {self.path}: {e}",
                path=str(self.path),
                entry=archive_name,
            ) from e

        files = []
        for member in members:
            name = member.name
            if member.isdir() and not name.endswith("/"):
                name += "/"
            files.append(name)
        return files

    def absolute_files(self, archive_name: str) -> List[str]:
        prefix = self.destination(archive_name)
        return [os.path.join(prefix, relative) for relative in self.relative_files(archive_name)]

    def installed_files(self) -> List[str]:
        """Absolute paths written by the content bundles, in bundle order."""
        files: List[str] = []
        for archive_name in self.nested_archives():
            if archive_name == SCRIPTS_ARCHIVE:
                continue
            files.extend(self.absolute_files(archive_name))
        return files

    def extract(self, archive_name: str, destination: Union[str, Path]) -> None:
        """Unpack a bundle under ``destination``.

        Existing files are overwritten and unrelated files are left in place.
        An absent bundle is a no-op. A failure midway leaves what was already
        written.

        Raises:
            PackageFormatError: If the bundle is unreadable or holds unsafe members
            OSError: If writing to the destination fails
        """
        tar = self._open_bundle(archive_name)
        if tar is None:
            logger.debug("Bundle absent, nothing to extract", rpkg=str(self.path), bundle=archive_name)
            return

        logger.debug("Extracting bundle", rpkg=str(self.path), bundle=archive_name, destination=str(destination))
        os.makedirs(destination, exist_ok=True)
        try:
            with tar:
                tar.extractall(destination, filter="tar")
        except (tarfile.TarError, lzma.LZMAError, EOFError) as e:
            raise PackageFormatError(
                f"Cannot extract bundle '{archive_name}' of {self.path}: {e}",
                path=str(self.path),
                entry=archive_name,
            ) from e

    @classmethod
    def create(
            cls,
            output_path: Union[str, Path],
            metadata: PluginMetadata,
            bundles: Dict[str, Union[str, Path]],
            scripts_root: Union[str, Path],
            scripts_dir: Optional[Union[str, Path]] = None
    ) -> Rpkg:
        """Build an rpkg from directories.

        Args:
            output_path: Path where the package will be created
            metadata: Metadata to embed
            bundles: Bundle name to the directory whose content it holds
            scripts_root: Scripts root used by the returned package
            scripts_dir: Directory packed as ``scripts.txz``, if any

        Returns:
            The created package, opened

        Raises:
            PackageFormatError: If a source directory does not exist
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        members = [(cls.METADATA_ENTRY, metadata.to_json().encode("utf-8"))]
        if scripts_dir is not None:
            members.append((SCRIPTS_ARCHIVE, _pack_directory(Path(scripts_dir))))
        for archive_name, source_dir in bundles.items():
            members.append((archive_name, _pack_directory(Path(source_dir))))

        container.write_archive(output_path, members)
        logger.info("Created rpkg", rpkg=str(output_path), plugin=metadata.name)
        return cls.open(output_path, scripts_root)


def _pack_directory(source_dir: Path) -> bytes:
    if not source_dir.is_dir():
        raise PackageFormatError(f"Source directory not found: {source_dir}", path=str(source_dir))

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:xz") as tar:
        for child in sorted(source_dir.iterdir()):
            tar.add(child, arcname=child.name)
    return buffer.getvalue()
