from __future__ import annotations

import shutil
import subprocess
from typing import Callable, List, Optional

from rudder_package.core.logging_manager import get_logger
from rudder_package.plugin_system.database import Database
from rudder_package.plugin_system.manifest import Dependencies
from rudder_package.plugin_system.versions import RudderVersion

logger = get_logger(__name__)

# The module name is passed as an argument, never spliced into the code
FIND_MODULE = "import importlib.util, sys; sys.exit(importlib.util.find_spec(sys.argv[1]) is None)"


def _run_quietly(command: List[str]) -> int:
    """Run a probe command, returning its exit status (127 if it cannot start)."""
    try:
        completed = subprocess.run(command, capture_output=True, check=False)
    except OSError:
        return 127
    return completed.returncode


class DependencyChecker:
    """Checks the dependencies a plugin declares.

    Plugin dependencies must be recorded in the database, and when the running
    Rudder version is known, recorded with a compatible host version. System
    dependencies are probed on the host: binaries through ``PATH``, Python
    modules by looking them up with ``python3``, and distribution packages with
    ``dpkg`` or ``rpm`` when that package manager exists on the host.

    Attributes:
        database: Installed package database
        running_version: Running Rudder version, if known
    """

    def __init__(
            self,
            database: Database,
            running_version: Optional[RudderVersion] = None,
            which: Callable[[str], Optional[str]] = shutil.which,
            run_command: Callable[[List[str]], int] = _run_quietly
    ) -> None:
        self.database = database
        self.running_version = running_version
        self._which = which
        self._run_command = run_command

    def missing(self, depends: Optional[Dependencies]) -> List[str]:
        """Describe every unsatisfied dependency.

        Args:
            depends: Declared dependencies, or None

        Returns:
            Human-readable descriptions, empty when everything is satisfied
        """
        if depends is None:
            return []

        missing: List[str] = []
        missing.extend(self._missing_plugins(depends.plugins))
        missing.extend(f"binary '{b}'" for b in depends.binary if self._which(b) is None)
        missing.extend(
            f"python module '{m}'" for m in depends.python
            if self._run_command(["python3", "-c", FIND_MODULE, m]) != 0
        )
        missing.extend(self._missing_packages("apt", "dpkg", ["dpkg", "-s"], depends.apt))
        missing.extend(self._missing_packages("rpm", "rpm", ["rpm", "-q"], depends.rpm))

        if missing:
            logger.debug("Unsatisfied dependencies", missing=missing)
        return missing

    def are_installed(self, depends: Optional[Dependencies]) -> bool:
        return not self.missing(depends)

    def _missing_plugins(self, plugins: List[str]) -> List[str]:
        missing = []
        for name in plugins:
            record = self.database.get(name)
            if record is None:
                missing.append(f"plugin '{name}'")
            elif self.running_version is not None and not record.metadata.rudder_version.is_compatible(
                    self.running_version
            ):
                missing.append(
                    f"plugin '{name}' (installed build targets Rudder {record.metadata.rudder_version}, "
                    f"running {self.running_version})"
                )
        return missing

    def _missing_packages(self, kind: str, tool: str, probe: List[str], packages: List[str]) -> List[str]:
        if not packages:
            return []
        if self._which(tool) is None:
            logger.debug("Skipping package dependencies, no package manager", kind=kind, packages=packages)
            return []
        return [f"{kind} package '{p}'" for p in packages if self._run_command(probe + [p]) != 0]
