"""Rpkg plugin packages: format, versions, database and install lifecycle."""

from rudder_package.plugin_system.database import Database, InstalledPlugin
from rudder_package.plugin_system.installer import PluginInstaller
from rudder_package.plugin_system.lifecycle import PackageScript, PackageScriptArg, PluginLifecycleState
from rudder_package.plugin_system.manifest import Dependencies, PluginMetadata
from rudder_package.plugin_system.package import Rpkg
from rudder_package.plugin_system.repository import IndexEntry, RepoIndex, Repository
from rudder_package.plugin_system.signing import SignatureVerifier
from rudder_package.plugin_system.versions import ArchiveVersion, PluginVersion, ReleaseStage, RudderVersion
from rudder_package.plugin_system.webapp import Webapp

__all__ = [
    "ArchiveVersion",
    "Database",
    "Dependencies",
    "IndexEntry",
    "InstalledPlugin",
    "PackageScript",
    "PackageScriptArg",
    "PluginInstaller",
    "PluginLifecycleState",
    "PluginMetadata",
    "PluginVersion",
    "ReleaseStage",
    "RepoIndex",
    "Repository",
    "Rpkg",
    "RudderVersion",
    "SignatureVerifier",
    "Webapp",
]
