"""Command-line interface for the Rudder plugin package manager.

Commands install, uninstall, list, update the repository index and enable
plugin jars. Install and uninstall process each target independently; the
exit code is 1 if any of them failed.
"""

from __future__ import annotations

import argparse
import os
import sys
import tarfile
import traceback
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from rudder_package.__version__ import __version__
from rudder_package.core.config_manager import ConfigManager, Configuration
from rudder_package.core.logging_manager import configure_logging, get_logger
from rudder_package.plugin_system.database import Database
from rudder_package.plugin_system.installer import PluginInstaller
from rudder_package.plugin_system.repository import RepoIndex, Repository
from rudder_package.plugin_system.signing import SignatureVerifier
from rudder_package.plugin_system.webapp import Webapp
from rudder_package.utils.exceptions import (
    PluginNotFoundError,
    RepositoryError,
    RudderPackageError,
)

logger = get_logger(__name__)

BACKUP_FILE_NAME = "plugins_status.backup"


def _report(error: BaseException, debug: bool) -> None:
    print(f"Error: {error}", file=sys.stderr)
    if debug:
        traceback.print_exception(error)


def _build_webapp(config: Configuration) -> Webapp:
    return Webapp(config.paths.webapp_xml, config.webapp.restart_command)


def _build_repository(config: Configuration, transport: Optional[httpx.BaseTransport], verify: bool) -> Repository:
    verifier = SignatureVerifier.from_keyring(config.paths.keyring) if verify else None
    return Repository(config.repository, verifier=verifier, transport=transport)


def _apply_webapp_changes(webapp: Webapp, debug: bool) -> bool:
    try:
        webapp.apply_changes()
    except RudderPackageError as e:
        _report(e, debug)
        return False
    return True


def _download_plugin(
        name: str,
        config: Configuration,
        installer: PluginInstaller,
        repository: Repository
) -> Path:
    """Find the best build of a plugin in the index and download it."""
    index = RepoIndex.from_path(config.paths.repository_index)
    running = installer.running_version()
    entry = index.get_compatible_plugin(running, name)
    if entry is None:
        raise PluginNotFoundError(
            f"Could not find any compatible '{name}' plugin with the current Rudder "
            f"version {running} in the configured repository.",
            plugin_name=name,
        )

    logger.debug("Found a compatible plugin in the repository", plugin=name, remote=entry.path)
    destination = config.paths.tmp_folder / os.path.basename(entry.path)
    return repository.download(entry.path, destination)


def install_command(args: argparse.Namespace) -> int:
    """Handle the install command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config: Configuration = args.configuration
    webapp = _build_webapp(config)
    installer = PluginInstaller(config.paths, webapp)
    repository: Optional[Repository] = None
    failures = 0

    try:
        for target in args.packages:
            try:
                if os.path.isfile(target):
                    rpkg_path = Path(target)
                else:
                    if repository is None:
                        repository = _build_repository(config, args.transport, verify=True)
                    rpkg_path = _download_plugin(target, config, installer, repository)

                rpkg = installer.open_package(rpkg_path)
                installer.install(rpkg, force=args.force)
                print(f"Installed {rpkg.name} {rpkg.metadata.version}")
            except RudderPackageError as e:
                failures += 1
                logger.debug("Installation failed", target=target, error=str(e))
                _report(e, args.debug)
    finally:
        if repository is not None:
            repository.close()

    if not _apply_webapp_changes(webapp, args.debug):
        failures += 1
    return 1 if failures else 0


def uninstall_command(args: argparse.Namespace) -> int:
    """Handle the uninstall command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config: Configuration = args.configuration
    webapp = _build_webapp(config)
    installer = PluginInstaller(config.paths, webapp)
    failures = 0

    for name in args.names:
        try:
            installer.uninstall(name)
            print(f"Uninstalled {name}")
        except RudderPackageError as e:
            failures += 1
            logger.debug("Uninstallation failed", plugin=name, error=str(e))
            _report(e, args.debug)

    if not _apply_webapp_changes(webapp, args.debug):
        failures += 1
    return 1 if failures else 0


def list_command(args: argparse.Namespace) -> int:
    """Handle the list command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config: Configuration = args.configuration
    try:
        database = Database.read(config.paths.database)
    except RudderPackageError as e:
        _report(e, args.debug)
        return 1

    if not len(database):
        print("No plugins installed.")
        return 0

    installer = PluginInstaller(config.paths, _build_webapp(config))
    try:
        enabled = set(installer.enabled_plugins())
    except RudderPackageError as e:
        logger.debug("Cannot read the enabled jars", error=str(e))
        enabled = None

    print(f"Installed plugins ({len(database)}):")
    for name in sorted(database):
        record = database.plugins[name]
        if not record.metadata.jar_files:
            status = ""
        elif enabled is None:
            status = "unknown"
        else:
            status = "enabled" if name in enabled else "disabled"
        print(f"  {name:<32} {str(record.metadata.version):<24} {status}".rstrip())
    return 0


def update_command(args: argparse.Namespace) -> int:
    """Handle the update command.

    Downloads the repository index of the running Rudder line and, when an
    account is configured, the licenses of that account.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config: Configuration = args.configuration
    installer = PluginInstaller(config.paths, _build_webapp(config))

    try:
        running = installer.running_version()
        with _build_repository(config, args.transport, verify=False) as repository:
            logger.debug("Updating repository index", line=running.line)
            repository.download_unsafe(f"{running.line}/rpkg.index", config.paths.repository_index)

            username = repository.get_username()
            if username is None:
                logger.debug("Not updating licenses as no credentials are configured")
            else:
                _update_licenses(repository, username, config.paths.licenses_folder)
    except RudderPackageError as e:
        _report(e, args.debug)
        return 1

    print(f"Repository index updated for Rudder {running.line}")
    return 0


def _update_licenses(repository: Repository, username: str, licenses_folder: Path) -> None:
    archive_name = f"{username}-license.tar.gz"
    local_archive = licenses_folder / archive_name
    try:
        repository.download_unsafe(f"licences/{username}/{archive_name}", local_archive)
    except RepositoryError as e:
        raise RepositoryError(
            f"Could not download licenses from the configured repository: {e}",
            url=e.url,
            status_code=e.status_code,
        ) from e

    try:
        with tarfile.open(local_archive, mode="r:gz") as tar:
            tar.extractall(licenses_folder, filter="tar")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise RepositoryError(f"Cannot unpack license archive {local_archive}: {e}") from e
    logger.info("Licenses updated", folder=str(licenses_folder))


def enable_command(args: argparse.Namespace) -> int:
    """Handle the enable command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config: Configuration = args.configuration
    webapp = _build_webapp(config)
    installer = PluginInstaller(config.paths, webapp)
    backup_path = Path(args.backup_path) if args.backup_path else config.paths.tmp_folder / BACKUP_FILE_NAME

    try:
        database = Database.read(config.paths.database)

        if args.all or args.names:
            names = list(database) if args.all else args.names
            for name in names:
                if not database.is_installed(name):
                    print(f"Plugin {name} not found installed")
                    continue
                installer.enable(name)

        elif args.snapshot:
            lines = [f"enable {name}" for name in installer.enabled_plugins()]
            backup_path.parent.mkdir(parents=True, exist_ok=True)
            backup_path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
            print(f"Saved the status of {len(lines)} enabled plugins to {backup_path}")
            return 0

        elif args.restore:
            for line in backup_path.read_text(encoding="utf-8").splitlines():
                parts = line.split()
                if not parts:
                    continue
                if len(parts) != 2 or parts[0] != "enable":
                    logger.debug("Malformed line in plugin backup status file", line=line)
                    continue
                if not database.is_installed(parts[1]):
                    logger.debug("Plugin is not installed, it could not be enabled", plugin=parts[1])
                    continue
                installer.enable(parts[1])

        else:
            print("Nothing to enable: give plugin names, --all, --snapshot or --restore", file=sys.stderr)
            return 1

    except (RudderPackageError, OSError) as e:
        _report(e, args.debug)
        return 1

    return 0 if _apply_webapp_changes(webapp, args.debug) else 1


COMMANDS: Dict[str, Callable[[argparse.Namespace], int]] = {
    "install": install_command,
    "uninstall": uninstall_command,
    "list": list_command,
    "update": update_command,
    "enable": enable_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rudder-package",
        description="Rudder plugin package manager",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", help="Configuration file (YAML or JSON)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and tracebacks")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Install command
    install_parser = subparsers.add_parser("install", help="Install plugins from rpkg files or the repository")
    install_parser.add_argument("packages", nargs="+", help="rpkg paths or plugin names")
    install_parser.add_argument("--force", action="store_true",
                                help="Skip the compatibility and dependency checks")

    # Uninstall command
    uninstall_parser = subparsers.add_parser("uninstall", help="Uninstall plugins")
    uninstall_parser.add_argument("names", nargs="+", help="Plugin names")

    subparsers.add_parser("list", help="List installed plugins")
    subparsers.add_parser("update", help="Update the repository index and licenses")

    # Enable command
    enable_parser = subparsers.add_parser("enable", help="Enable the jars of installed plugins")
    enable_parser.add_argument("names", nargs="*", help="Plugin names")
    enable_parser.add_argument("--all", action="store_true", help="Enable every installed plugin")
    mode = enable_parser.add_mutually_exclusive_group()
    mode.add_argument("--snapshot", action="store_true", help="Save the list of enabled plugins")
    mode.add_argument("--restore", action="store_true", help="Enable the plugins listed in the backup file")
    enable_parser.add_argument("--backup-path", help="Backup file used by --snapshot and --restore")

    return parser


def main(args: Optional[List[str]] = None, transport: Optional[httpx.BaseTransport] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])
        transport: HTTP transport override for the repository client

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    try:
        parsed.configuration = ConfigManager(parsed.config).load()
    except RudderPackageError as e:
        _report(e, parsed.debug)
        return 1

    configure_logging(parsed.configuration.logging, debug=parsed.debug)
    parsed.transport = transport
    return COMMANDS[parsed.command](parsed)


if __name__ == "__main__":
    sys.exit(main())
