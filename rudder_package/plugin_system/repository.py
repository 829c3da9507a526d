from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from rudder_package.core.config_manager import RepositoryConfig
from rudder_package.core.logging_manager import get_logger
from rudder_package.plugin_system.manifest import PluginMetadata
from rudder_package.plugin_system.signing import SignatureVerifier
from rudder_package.plugin_system.versions import RudderVersion
from rudder_package.utils.exceptions import MalformedMetadataError, RepositoryError, SignatureError

logger = get_logger(__name__)


@dataclass
class IndexEntry:
    """A plugin build published in the repository.

    Attributes:
        metadata: Metadata of the build
        path: Path of the rpkg relative to the repository root
    """

    metadata: PluginMetadata
    path: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IndexEntry:
        data = dict(data)
        path = data.pop("path", None)
        if not isinstance(path, str) or not path:
            raise ValueError("index entry has no 'path'")
        return cls(metadata=PluginMetadata.from_dict(data), path=path)


class RepoIndex:
    """The repository index: every published build with its remote path."""

    def __init__(self, entries: Optional[List[IndexEntry]] = None) -> None:
        self.entries: List[IndexEntry] = list(entries or [])

    @classmethod
    def from_json(cls, text: str) -> RepoIndex:
        """Parse an index document.

        Entries whose metadata is invalid are skipped with a warning.

        Raises:
            RepositoryError: If the document is not a JSON list
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RepositoryError(f"Repository index is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise RepositoryError("Repository index must be a JSON list")

        entries = []
        for raw in data:
            try:
                entries.append(IndexEntry.from_dict(raw))
            except (TypeError, ValueError, MalformedMetadataError) as e:
                logger.warning("Skipping invalid repository index entry", error=str(e))
        return cls(entries)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> RepoIndex:
        """Read the local copy of the index.

        Raises:
            RepositoryError: If the file is missing or unreadable
        """
        path = Path(path)
        if not path.exists():
            raise RepositoryError(
                f"Repository index {path} not found, run 'rudder-package update' first"
            )
        try:
            return cls.from_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise RepositoryError(f"Cannot read repository index {path}: {e}") from e

    def get_compatible_plugin(self, host_version: RudderVersion, name: str) -> Optional[IndexEntry]:
        """Pick the best build of a plugin for a host version.

        Builds are filtered by name and host compatibility; the highest plugin
        version wins and a release outranks a nightly of the same version.
        """
        candidates = [
            entry for entry in self.entries
            if entry.metadata.name == name and entry.metadata.rudder_version.is_compatible(host_version)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda entry: entry.metadata.plugin_version)

    def names(self) -> List[str]:
        return sorted({entry.metadata.name for entry in self.entries})


class Repository:
    """Client for the remote plugin repository.

    Attributes:
        url: Repository root URL
        username: Account used for authentication and licenses, if any
        verifier: Signature verifier used by :meth:`download`
    """

    def __init__(
            self,
            config: RepositoryConfig,
            verifier: Optional[SignatureVerifier] = None,
            transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        """Initialize a repository client.

        Args:
            config: Repository section of the configuration
            verifier: Signature verifier for downloaded packages
            transport: Transport override for the HTTP client
        """
        self.url = config.url.rstrip("/")
        self.username = config.username
        self.verifier = verifier

        auth = None
        if config.username is not None:
            auth = httpx.BasicAuth(config.username, config.password or "")
        self._client = httpx.Client(
            timeout=config.timeout,
            auth=auth,
            proxy=config.proxy,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> Repository:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_username(self) -> Optional[str]:
        return self.username

    def _remote_url(self, remote_path: str) -> str:
        # Index paths are written relative to the repository root ("./8.1/...")
        if remote_path.startswith("./"):
            remote_path = remote_path[2:]
        return f"{self.url}/{remote_path.lstrip('/')}"

    def download_unsafe(self, remote_path: str, local_path: Union[str, Path]) -> Path:
        """Download a file without checking its signature.

        Args:
            remote_path: Path relative to the repository root
            local_path: Where to write the file

        Returns:
            The local path

        Raises:
            RepositoryError: If the request fails
        """
        url = self._remote_url(remote_path)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        logger.debug("Downloading", url=url, destination=str(local_path))
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                with open(local_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=8192):
                        f.write(chunk)
        except httpx.HTTPStatusError as e:
            self._discard(local_path)
            raise RepositoryError(
                f"Repository returned error {e.response.status_code} for {url}",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            self._discard(local_path)
            raise RepositoryError(f"Failed to download {url}: {e}", url=url) from e
        except OSError as e:
            self._discard(local_path)
            raise RepositoryError(f"Cannot write {local_path}: {e}", url=url) from e

        return local_path

    def download(self, remote_path: str, local_path: Union[str, Path]) -> Path:
        """Download a file and check its signed checksum.

        Raises:
            RepositoryError: If a request fails
            SignatureError: If the file cannot be authenticated; it is deleted
        """
        if self.verifier is None:
            raise SignatureError("No signature verifier configured", path=str(local_path))

        local_path = self.download_unsafe(remote_path, local_path)
        checksum_path = Path(f"{local_path}.sha512sum")
        signature_path = Path(f"{local_path}.sha512sum.sign")
        try:
            self.download_unsafe(f"{remote_path}.sha512sum", checksum_path)
            self.download_unsafe(f"{remote_path}.sha512sum.sign", signature_path)
            self.verifier.verify_file(
                local_path, checksum_path, signature_path, expected_name=os.path.basename(remote_path)
            )
        except (RepositoryError, SignatureError):
            self._discard(local_path)
            raise
        finally:
            self._discard(checksum_path)
            self._discard(signature_path)

        logger.info("Downloaded", url=self._remote_url(remote_path), destination=str(local_path))
        return local_path

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
