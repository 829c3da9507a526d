from __future__ import annotations

import enum
import subprocess
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Union

from rudder_package.core.logging_manager import get_logger
from rudder_package.utils.exceptions import ScriptExecutionError

logger = get_logger(__name__)


class PluginLifecycleState(enum.Enum):
    """States of a plugin during package operations."""

    NOT_INSTALLED = "not_installed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    UNINSTALLING = "uninstalling"
    FAILED = "failed"


_TRANSITIONS: Dict[PluginLifecycleState, FrozenSet[PluginLifecycleState]] = {
    PluginLifecycleState.NOT_INSTALLED: frozenset({PluginLifecycleState.INSTALLING}),
    PluginLifecycleState.INSTALLING: frozenset({PluginLifecycleState.INSTALLED, PluginLifecycleState.FAILED}),
    PluginLifecycleState.INSTALLED: frozenset({PluginLifecycleState.INSTALLING, PluginLifecycleState.UNINSTALLING}),
    PluginLifecycleState.UNINSTALLING: frozenset({PluginLifecycleState.NOT_INSTALLED, PluginLifecycleState.FAILED}),
    PluginLifecycleState.FAILED: frozenset({PluginLifecycleState.INSTALLING, PluginLifecycleState.UNINSTALLING}),
}


class PackageScript(str, enum.Enum):
    PREINST = "preinst"
    POSTINST = "postinst"
    PRERM = "prerm"
    POSTRM = "postrm"


class PackageScriptArg(str, enum.Enum):
    """Single positional argument given to lifecycle scripts."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    NONE = ""


class LifecycleManager:
    """Tracks the lifecycle state of the plugins touched in this process."""

    def __init__(self) -> None:
        self._plugin_states: Dict[str, PluginLifecycleState] = {}

    def get_state(self, plugin_name: str) -> Optional[PluginLifecycleState]:
        return self._plugin_states.get(plugin_name)

    def set_state(self, plugin_name: str, state: PluginLifecycleState) -> None:
        """Move a plugin to a new state.

        Args:
            plugin_name: The name of the plugin
            state: The new state

        Raises:
            ValueError: If the transition is not allowed
        """
        old_state = self._plugin_states.get(plugin_name)
        if old_state is not None and state not in _TRANSITIONS[old_state]:
            raise ValueError(f"Plugin '{plugin_name}' cannot go from {old_state.name} to {state.name}")
        self._plugin_states[plugin_name] = state
        logger.debug(
            "Plugin state changed",
            plugin=plugin_name,
            old_state=old_state.name if old_state else None,
            new_state=state.name,
        )

    def ensure_known(self, plugin_name: str, installed: bool) -> None:
        """Seed the state of a plugin seen for the first time from the database."""
        if plugin_name not in self._plugin_states:
            self._plugin_states[plugin_name] = (
                PluginLifecycleState.INSTALLED if installed else PluginLifecycleState.NOT_INSTALLED
            )


class ScriptRunner:
    """Runs the lifecycle scripts stored under ``<scripts root>/<plugin>/<script>``.

    A script that does not exist is skipped. A script that exits with a
    non-zero status is logged and does not fail the package operation.
    """

    def __init__(self, scripts_root: Union[str, Path], timeout: Optional[float] = None) -> None:
        self.scripts_root = Path(scripts_root)
        self.timeout = timeout

    def script_path(self, plugin_name: str, script: PackageScript) -> Path:
        return self.scripts_root / plugin_name / script.value

    def run(
            self, plugin_name: str, script: PackageScript, arg: PackageScriptArg
    ) -> Optional[subprocess.CompletedProcess]:
        """Run one lifecycle script.

        Args:
            plugin_name: The plugin owning the script
            script: Which script to run
            arg: The argument passed to the script

        Returns:
            The completed process, or None when the script does not exist

        Raises:
            ScriptExecutionError: If the script exists but cannot be started
        """
        path = self.script_path(plugin_name, script)
        if not path.exists():
            logger.debug("No package script, skipping", plugin=plugin_name, script=script.value)
            return None

        logger.debug("Running package script", plugin=plugin_name, script=script.value, arg=arg.value)
        try:
            completed = subprocess.run(
                [str(path), arg.value],
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ScriptExecutionError(
                f"Could not execute package script '{script.value}' of plugin '{plugin_name}': {e}",
                plugin_name=plugin_name,
                script=script.value,
            ) from e

        if completed.stdout:
            logger.debug("Package script output", plugin=plugin_name, script=script.value, stdout=completed.stdout)
        if completed.stderr:
            logger.debug("Package script errors", plugin=plugin_name, script=script.value, stderr=completed.stderr)
        if completed.returncode != 0:
            logger.warning(
                "Package script returned an unexpected exit code",
                plugin=plugin_name,
                script=script.value,
                exit_code=completed.returncode,
            )
        return completed
