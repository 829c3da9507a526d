"""Installed package database.

The database is a single JSON file mapping each installed plugin name to the
files it wrote and the metadata it was installed from. It is always read and
written in full; :meth:`Database.locked` wraps the read-modify-write cycle in
an exclusive ``flock`` on a sibling ``.lock`` file so that concurrent
invocations serialize instead of losing updates.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from rudder_package.core.logging_manager import get_logger
from rudder_package.plugin_system.manifest import PluginMetadata
from rudder_package.utils.exceptions import (
    DatabaseError,
    MalformedMetadataError,
    PluginNotInstalledError,
)

logger = get_logger(__name__)


@dataclass
class InstalledPlugin:
    """Information about an installed plugin.

    Attributes:
        metadata: Metadata of the installed rpkg
        files: Absolute paths written on disk, in extraction order
    """

    metadata: PluginMetadata
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary.

        Returns:
            Dictionary representation of the installed plugin
        """
        return {
            "files": list(self.files),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> InstalledPlugin:
        """Create an InstalledPlugin from a dictionary.

        Args:
            data: Dictionary with installed plugin data

        Returns:
            InstalledPlugin instance
        """
        files = data.get("files", [])
        if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
            raise ValueError("'files' must be a list of paths")
        return cls(metadata=PluginMetadata.from_dict(data["metadata"]), files=files)


class Database:
    """In-memory view of the installed package database.

    Attributes:
        plugins: Installed plugins by name
        modified: Whether the content changed since it was read
    """

    def __init__(self, plugins: Optional[Dict[str, InstalledPlugin]] = None) -> None:
        self.plugins: Dict[str, InstalledPlugin] = dict(plugins or {})
        self.modified = False

    def __contains__(self, name: object) -> bool:
        return name in self.plugins

    def __len__(self) -> int:
        return len(self.plugins)

    def __iter__(self) -> Iterator[str]:
        return iter(self.plugins)

    @classmethod
    def read(cls, path: Union[str, Path]) -> Database:
        """Read the database file.

        A missing or blank file is an empty database.

        Args:
            path: Path to the database file

        Returns:
            The database

        Raises:
            DatabaseError: If the file cannot be read or its content is invalid
        """
        path = Path(path)
        if not path.exists():
            logger.debug("No package database yet", database=str(path))
            return cls()

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DatabaseError(f"Cannot read package database {path}: {e}", path=str(path)) from e

        if not content.strip():
            return cls()

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise DatabaseError(f"Package database {path} is not valid JSON: {e}", path=str(path)) from e

        if not isinstance(data, dict):
            raise DatabaseError(f"Package database {path} must hold a JSON object", path=str(path))

        plugins: Dict[str, InstalledPlugin] = {}
        for name, record in data.items():
            try:
                plugins[name] = InstalledPlugin.from_dict(record)
            except (KeyError, TypeError, ValueError, MalformedMetadataError) as e:
                raise DatabaseError(
                    f"Invalid record for plugin '{name}' in package database {path}: {e}",
                    path=str(path),
                    plugin_name=name,
                ) from e
        return cls(plugins)

    def write(self, path: Union[str, Path]) -> None:
        """Write the whole database, replacing the file atomically.

        Raises:
            DatabaseError: If the file cannot be written
        """
        path = Path(path)
        data = {name: plugin.to_dict() for name, plugin in self.plugins.items()}

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    mode="w",
                    encoding="utf-8",
                    suffix=".json",
                    dir=path.parent,
                    delete=False
            ) as tmp:
                json.dump(data, tmp, indent=2)
                tmp_path = Path(tmp.name)
            os.replace(tmp_path, path)
        except OSError as e:
            raise DatabaseError(f"Cannot write package database {path}: {e}", path=str(path)) from e

        self.modified = False
        logger.debug("Package database written", database=str(path), plugins=len(self.plugins))

    def is_installed(self, name: str) -> bool:
        """Whether a plugin of that name is recorded, whatever its version."""
        return name in self.plugins

    def get(self, name: str) -> Optional[InstalledPlugin]:
        return self.plugins.get(name)

    def insert(self, name: str, plugin: InstalledPlugin) -> None:
        """Record a plugin, replacing any previous record of the same name."""
        self.plugins[name] = plugin
        self.modified = True

    def remove(self, name: str) -> InstalledPlugin:
        """Forget a plugin.

        Raises:
            PluginNotInstalledError: If the plugin is not recorded
        """
        try:
            plugin = self.plugins.pop(name)
        except KeyError:
            raise PluginNotInstalledError(
                f"Plugin '{name}' is not installed", plugin_name=name
            ) from None
        self.modified = True
        return plugin

    @staticmethod
    def lock_path(path: Union[str, Path]) -> Path:
        path = Path(path)
        return path.with_name(path.name + ".lock")

    @classmethod
    @contextlib.contextmanager
    def locked(cls, path: Union[str, Path]) -> Iterator[Database]:
        """Read the database under an exclusive lock.

        The database is written back when the block exits normally and the
        content was modified. The lock is released in every case.

        Args:
            path: Path to the database file

        Yields:
            The database read from disk
        """
        lock_file = cls.lock_path(path)
        try:
            lock_file.parent.mkdir(parents=True, exist_ok=True)
            handle = open(lock_file, "w")
        except OSError as e:
            raise DatabaseError(f"Cannot open lock file {lock_file}: {e}", path=str(path)) from e

        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            logger.debug("Acquired package database lock", lock=str(lock_file))
            try:
                database = cls.read(path)
                yield database
                if database.modified:
                    database.write(path)
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
