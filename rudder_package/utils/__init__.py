"""Utility functions and classes for rudder-package."""

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
