from __future__ import annotations

import contextlib
import errno
import os
import shutil
from pathlib import Path
from typing import Iterator, List, Optional

from rudder_package.core.config_manager import PathsConfig
from rudder_package.core.logging_manager import get_logger
from rudder_package.plugin_system.database import Database, InstalledPlugin
from rudder_package.plugin_system.dependency import DependencyChecker
from rudder_package.plugin_system.lifecycle import (
    LifecycleManager,
    PackageScript,
    PackageScriptArg,
    PluginLifecycleState,
    ScriptRunner,
)
from rudder_package.plugin_system.manifest import SCRIPTS_ARCHIVE
from rudder_package.plugin_system.package import Rpkg
from rudder_package.plugin_system.versions import RudderVersion
from rudder_package.plugin_system.webapp import Webapp
from rudder_package.utils.exceptions import (
    IncompatiblePluginError,
    InstallationError,
    MissingDependencyError,
    PluginNotInstalledError,
    RudderPackageError,
)

logger = get_logger(__name__)


class PluginInstaller:
    """Installs and uninstalls rpkg plugins.

    Installation checks compatibility and dependencies before touching
    anything, then runs the package steps in order. A failing step aborts the
    operation with an InstallationError naming it; what earlier steps wrote
    stays in place.

    Attributes:
        paths: Filesystem locations
        webapp: Host configuration editor
        scripts: Lifecycle script runner
        lifecycle: Per plugin state tracking
    """

    def __init__(
            self,
            paths: PathsConfig,
            webapp: Webapp,
            running_version: Optional[RudderVersion] = None,
            scripts: Optional[ScriptRunner] = None,
            dependency_checker: Optional[DependencyChecker] = None
    ) -> None:
        """Initialize the plugin installer.

        Args:
            paths: Filesystem locations
            webapp: Host configuration editor
            running_version: Running Rudder version, read from the version file when None
            scripts: Lifecycle script runner, defaults to one rooted at the packages folder
            dependency_checker: Dependency checker, built from the database when None
        """
        self.paths = paths
        self.webapp = webapp
        self.scripts = scripts or ScriptRunner(paths.packages_folder)
        self.lifecycle = LifecycleManager()
        self._running_version = running_version
        self._dependency_checker = dependency_checker

    @property
    def database_path(self) -> Path:
        return self.paths.database

    def running_version(self) -> RudderVersion:
        """Running Rudder version, read once from the version file."""
        if self._running_version is None:
            self._running_version = RudderVersion.from_path(self.paths.rudder_version_file)
        return self._running_version

    def open_package(self, path: os.PathLike) -> Rpkg:
        return Rpkg.open(path, self.paths.packages_folder)

    @contextlib.contextmanager
    def _step(self, plugin_name: str, step: str) -> Iterator[None]:
        logger.debug("Package step", plugin=plugin_name, step=step)
        try:
            yield
        except (OSError, RudderPackageError) as e:
            raise InstallationError(
                f"Plugin '{plugin_name}' failed during '{step}': {e}",
                plugin_name=plugin_name,
                step=step,
            ) from e

    def check(self, rpkg: Rpkg, database: Database) -> None:
        """Refuse a package built for another Rudder line or with missing dependencies.

        Raises:
            IncompatiblePluginError: If the package targets another major.minor
            MissingDependencyError: If declared dependencies are not satisfied
        """
        running = self.running_version()
        target = rpkg.metadata.rudder_version
        if not target.is_compatible(running):
            raise IncompatiblePluginError(
                f"This plugin was built for a Rudder '{target}', it is incompatible "
                f"with your current webapp version '{running}'.",
                plugin_name=rpkg.name,
                plugin_version=str(target),
                webapp_version=str(running),
            )

        checker = self._dependency_checker or DependencyChecker(database, running)
        missing = checker.missing(rpkg.metadata.depends)
        if missing:
            raise MissingDependencyError(
                f"Some dependencies of '{rpkg.name}' are missing, install them before "
                f"trying to install the plugin: {', '.join(missing)}",
                plugin_name=rpkg.name,
                missing=missing,
            )

    def install(self, rpkg: Rpkg, force: bool = False) -> InstalledPlugin:
        """Install a plugin package.

        Args:
            rpkg: The opened package
            force: Skip the compatibility and dependency checks

        Returns:
            The record stored in the database

        Raises:
            IncompatiblePluginError: If the package targets another Rudder line
            MissingDependencyError: If dependencies are missing
            InstallationError: If a package step fails
        """
        name = rpkg.name
        database = Database.read(self.database_path)
        already_installed = database.is_installed(name)
        self.lifecycle.ensure_known(name, already_installed)

        if force:
            logger.warning("Skipping compatibility and dependency checks", plugin=name)
        else:
            self.check(rpkg, database)

        arg = PackageScriptArg.UPGRADE if already_installed else PackageScriptArg.INSTALL
        logger.info("Installing plugin", plugin=name, version=str(rpkg.metadata.version), rpkg=str(rpkg.path))
        self.lifecycle.set_state(name, PluginLifecycleState.INSTALLING)

        try:
            with self._step(name, "extract scripts"):
                rpkg.extract(SCRIPTS_ARCHIVE, rpkg.destination(SCRIPTS_ARCHIVE))

            with self._step(name, "preinst"):
                self.scripts.run(name, PackageScript.PREINST, arg)

            for archive_name in rpkg.metadata.content:
                with self._step(name, f"extract {archive_name}"):
                    rpkg.extract(archive_name, rpkg.destination(archive_name))

            with self._step(name, "update database"):
                record = InstalledPlugin(metadata=rpkg.metadata, files=rpkg.installed_files())
                with Database.locked(self.database_path) as locked_database:
                    locked_database.insert(name, record)

            with self._step(name, "postinst"):
                self.scripts.run(name, PackageScript.POSTINST, arg)

            with self._step(name, "enable jars"):
                for jar in rpkg.metadata.jar_files or []:
                    self.webapp.enable_jar(jar)
        except InstallationError:
            self.lifecycle.set_state(name, PluginLifecycleState.FAILED)
            raise

        self.lifecycle.set_state(name, PluginLifecycleState.INSTALLED)
        logger.info("Plugin installed", plugin=name, version=str(rpkg.metadata.version), files=len(record.files))
        return record

    def uninstall(self, name: str) -> InstalledPlugin:
        """Uninstall a plugin.

        Args:
            name: Name of the plugin

        Returns:
            The record removed from the database

        Raises:
            PluginNotInstalledError: If the plugin is not recorded
            InstallationError: If a package step fails
        """
        with Database.locked(self.database_path) as database:
            record = database.get(name)
            if record is None:
                raise PluginNotInstalledError(f"Plugin '{name}' is not installed", plugin_name=name)

            self.lifecycle.ensure_known(name, True)
            self.lifecycle.set_state(name, PluginLifecycleState.UNINSTALLING)
            logger.info("Uninstalling plugin", plugin=name, version=str(record.metadata.version))

            try:
                with self._step(name, "prerm"):
                    self.scripts.run(name, PackageScript.PRERM, PackageScriptArg.NONE)

                with self._step(name, "remove files"):
                    self._remove_files(record.files)

                with self._step(name, "postrm"):
                    self.scripts.run(name, PackageScript.POSTRM, PackageScriptArg.NONE)

                with self._step(name, "remove scripts"):
                    scripts_dir = self.scripts.scripts_root / name
                    if scripts_dir.is_dir():
                        shutil.rmtree(scripts_dir)

                with self._step(name, "disable jars"):
                    for jar in record.metadata.jar_files or []:
                        self.webapp.disable_jar(jar)

                database.remove(name)
            except InstallationError:
                self.lifecycle.set_state(name, PluginLifecycleState.FAILED)
                raise

        self.lifecycle.set_state(name, PluginLifecycleState.NOT_INSTALLED)
        logger.info("Plugin uninstalled", plugin=name)
        return record

    @staticmethod
    def _remove_files(files: List[str]) -> None:
        """Remove tracked paths, deepest first; directories only when empty."""
        for path in reversed(files):
            try:
                if os.path.islink(path) or os.path.isfile(path):
                    os.unlink(path)
                elif os.path.isdir(path):
                    os.rmdir(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    logger.debug("Keeping non-empty directory", path=path)
                else:
                    logger.warning("Could not remove file", path=path, error=str(e))

    def enable(self, name: str) -> List[str]:
        """Put the jars of an installed plugin back on the web application classpath.

        Returns:
            The jars that were enabled by this call

        Raises:
            PluginNotInstalledError: If the plugin is not recorded
        """
        record = Database.read(self.database_path).get(name)
        if record is None:
            raise PluginNotInstalledError(f"Plugin '{name}' is not installed", plugin_name=name)
        return [jar for jar in record.metadata.jar_files or [] if self.webapp.enable_jar(jar)]

    def enabled_plugins(self) -> List[str]:
        """Installed plugins with at least one jar on the classpath."""
        enabled_jars = set(self.webapp.jars())
        database = Database.read(self.database_path)
        return [
            name for name, record in database.plugins.items()
            if any(jar in enabled_jars for jar in record.metadata.jar_files or [])
        ]
