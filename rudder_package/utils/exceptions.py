from __future__ import annotations

from typing import Any, Dict, List, Optional


class RudderPackageError(Exception):
    """Base exception for all rudder-package errors."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        details: Dict[str, Any] = dict(kwargs.pop("details", {}) or {})
        details.update({key: value for key, value in kwargs.items() if value is not None})
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ConfigurationError(RudderPackageError):
    """Exception raised for configuration-related errors."""

    def __init__(
            self, message: str, *, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class PackageFormatError(RudderPackageError):
    """Exception raised when an rpkg file or one of its bundles is unreadable."""

    def __init__(
            self, message: str, *, path: Optional[str] = None, entry: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a PackageFormatError.

        Args:
            message: A descriptive error message.
            path: Path of the offending rpkg file.
            entry: Name of the offending container entry, if any.
            **kwargs: Additional error information.
        """
        super().__init__(message, path=path, entry=entry, **kwargs)
        self.path = path
        self.entry = entry


class MetadataError(PackageFormatError):
    """Base exception for problems with the metadata entry of an rpkg."""

    pass


class MissingMetadataError(MetadataError):
    """Exception raised when an rpkg has no metadata entry."""

    pass


class MalformedMetadataError(MetadataError):
    """Exception raised when the metadata entry is not valid for the expected schema."""

    pass


class UnmappedArchiveError(PackageFormatError):
    """Exception raised when a nested archive has no destination in the metadata."""

    pass


class VersionParseError(RudderPackageError, ValueError):
    """Exception raised when a version string does not match its grammar."""

    def __init__(self, message: str, *, version: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a VersionParseError.

        Args:
            message: A descriptive error message.
            version: The version string that failed to parse.
            **kwargs: Additional error information.
        """
        super().__init__(message, version=version, **kwargs)
        self.version = version


class PluginError(RudderPackageError):
    """Base exception for errors tied to a specific plugin."""

    def __init__(self, message: str, *, plugin_name: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a PluginError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin that caused the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, plugin_name=plugin_name, **kwargs)
        self.plugin_name = plugin_name


class IncompatiblePluginError(PluginError):
    """Exception raised when a plugin targets another host version line."""

    def __init__(
            self,
            message: str,
            *,
            plugin_name: Optional[str] = None,
            plugin_version: Optional[str] = None,
            webapp_version: Optional[str] = None,
            **kwargs: Any,
    ) -> None:
        """Initialize an IncompatiblePluginError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin.
            plugin_version: The host version the plugin was built for.
            webapp_version: The running host version.
            **kwargs: Additional error information.
        """
        super().__init__(
            message,
            plugin_name=plugin_name,
            plugin_version=plugin_version,
            webapp_version=webapp_version,
            **kwargs,
        )
        self.plugin_version = plugin_version
        self.webapp_version = webapp_version


class MissingDependencyError(PluginError):
    """Exception raised when declared dependencies are not satisfied."""

    def __init__(
            self,
            message: str,
            *,
            plugin_name: Optional[str] = None,
            missing: Optional[List[str]] = None,
            **kwargs: Any,
    ) -> None:
        """Initialize a MissingDependencyError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin being installed.
            missing: Descriptions of the missing dependencies.
            **kwargs: Additional error information.
        """
        super().__init__(message, plugin_name=plugin_name, missing=missing, **kwargs)
        self.missing = list(missing or [])


class InstallationError(PluginError):
    """Exception raised when a lifecycle step fails after the pre-checks."""

    def __init__(
            self, message: str, *, plugin_name: Optional[str] = None, step: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize an InstallationError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin.
            step: The lifecycle step that failed.
            **kwargs: Additional error information.
        """
        super().__init__(message, plugin_name=plugin_name, step=step, **kwargs)
        self.step = step


class ScriptExecutionError(PluginError):
    """Exception raised when a lifecycle script cannot be spawned."""

    def __init__(
            self, message: str, *, plugin_name: Optional[str] = None, script: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ScriptExecutionError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin owning the script.
            script: The script name (preinst, postinst, prerm, postrm).
            **kwargs: Additional error information.
        """
        super().__init__(message, plugin_name=plugin_name, script=script, **kwargs)
        self.script = script


class PluginNotInstalledError(PluginError):
    """Exception raised when a plugin is not recorded in the database."""

    pass


class PluginNotFoundError(PluginError):
    """Exception raised when no compatible plugin exists in the repository index."""

    pass


class DatabaseError(RudderPackageError):
    """Exception raised when the installed package database cannot be read or written."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a DatabaseError.

        Args:
            message: A descriptive error message.
            path: The path of the database file.
            **kwargs: Additional error information.
        """
        super().__init__(message, path=path, **kwargs)
        self.path = path


class RepositoryError(RudderPackageError):
    """Exception raised for errors talking to the plugin repository."""

    def __init__(
            self, message: str, *, url: Optional[str] = None, status_code: Optional[int] = None, **kwargs: Any
    ) -> None:
        """Initialize a RepositoryError.

        Args:
            message: A descriptive error message.
            url: The URL that was requested.
            status_code: The HTTP status code, if a response was received.
            **kwargs: Additional error information.
        """
        super().__init__(message, url=url, status_code=status_code, **kwargs)
        self.url = url
        self.status_code = status_code


class SignatureError(RudderPackageError):
    """Exception raised when a downloaded file cannot be authenticated."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a SignatureError.

        Args:
            message: A descriptive error message.
            path: The path of the file being verified.
            **kwargs: Additional error information.
        """
        super().__init__(message, path=path, **kwargs)
        self.path = path


class WebappError(RudderPackageError):
    """Exception raised when the host application configuration cannot be edited or reloaded."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a WebappError.

        Args:
            message: A descriptive error message.
            path: The path of the host configuration file.
            **kwargs: Additional error information.
        """
        super().__init__(message, path=path, **kwargs)
        self.path = path
