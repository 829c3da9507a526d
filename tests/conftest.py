"""Pytest configuration and fixtures for rudder-package tests."""

import logging
import os
import stat
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest
import structlog

from rudder_package.core.config_manager import Configuration, PathsConfig, WebappConfig
from rudder_package.plugin_system.manifest import PluginMetadata
from rudder_package.plugin_system.package import Rpkg
from rudder_package.plugin_system.webapp import Webapp

WEBAPP_XML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE Configure PUBLIC "-//Jetty//Configure//EN" "http://www.eclipse.org/jetty/configure_9_3.dtd">
<Configure class="org.eclipse.jetty.webapp.WebAppContext">
  <!-- Rudder web application -->
  <Set name="contextPath">/rudder</Set>
  <Set name="extraClasspath">{classpath}</Set>
</Configure>
"""


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Give every test the default structlog setup and restore root handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def configuration(tmp_path: Path) -> Configuration:
    """Configuration with every path inside the test directory."""
    root = tmp_path / "host"
    paths = PathsConfig(
        packages_folder=root / "var/rudder/packages",
        database=root / "var/rudder/packages/index.json",
        webapp_xml=root / "opt/rudder/share/webapps/rudder.xml",
        rudder_version_file=root / "opt/rudder/share/versions/rudder-server-version",
        repository_index=root / "var/rudder/tmp/plugins/rpkg.index",
        tmp_folder=root / "var/rudder/tmp/plugins",
        keyring=root / "opt/rudder/etc/rudder-pkg/rudder_plugins_key.pem",
        licenses_folder=root / "opt/rudder/etc/plugins/licenses",
    )
    return Configuration(paths=paths, webapp=WebappConfig(restart_command=[]))


@pytest.fixture
def paths(configuration: Configuration) -> PathsConfig:
    return configuration.paths


@pytest.fixture
def write_version(paths: PathsConfig) -> Callable[[str], Path]:
    """Write the running Rudder version file."""

    def _write(version: str) -> Path:
        paths.rudder_version_file.parent.mkdir(parents=True, exist_ok=True)
        paths.rudder_version_file.write_text(f"rudder_version={version}\n", encoding="utf-8")
        return paths.rudder_version_file

    return _write


@pytest.fixture
def running_version(write_version: Callable[[str], Path]) -> str:
    write_version("8.1.2")
    return "8.1.2"


@pytest.fixture
def write_webapp_xml(paths: PathsConfig) -> Callable[..., Path]:
    """Write a Jetty context file with the given classpath jars."""

    def _write(jars: Optional[List[str]] = None) -> Path:
        paths.webapp_xml.parent.mkdir(parents=True, exist_ok=True)
        paths.webapp_xml.write_text(WEBAPP_XML.format(classpath=",".join(jars or [])), encoding="utf-8")
        return paths.webapp_xml

    return _write


@pytest.fixture
def webapp(paths: PathsConfig, write_webapp_xml: Callable[..., Path]) -> Webapp:
    write_webapp_xml()
    return Webapp(paths.webapp_xml)


def _write_tree(root: Path, files: Dict[str, str], executable: bool = False) -> None:
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if executable:
            target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def make_rpkg(tmp_path: Path, paths: PathsConfig) -> Callable[..., Rpkg]:
    """Build rpkg files for tests.

    ``bundles`` maps a bundle name to ``(destination, {relative path: content})``
    and ``scripts`` maps a lifecycle script name to its shell body.
    """
    counter = {"n": 0}

    def _make(
            name: str = "test-plugin",
            version: str = "8.1.0-2.1",
            bundles: Optional[Dict[str, tuple]] = None,
            scripts: Optional[Dict[str, str]] = None,
            depends: Optional[object] = None,
            jar_files: Optional[List[str]] = None,
    ) -> Rpkg:
        counter["n"] += 1
        build_dir = tmp_path / "build" / f"{name}-{counter['n']}"
        bundles = bundles or {}

        sources: Dict[str, Path] = {}
        content: Dict[str, str] = {}
        for bundle_name, (destination, files) in bundles.items():
            source = build_dir / bundle_name
            _write_tree(source, files)
            sources[bundle_name] = source
            content[bundle_name] = str(destination)

        scripts_dir = None
        if scripts:
            scripts_dir = build_dir / "scripts"
            _write_tree(
                scripts_dir / name,
                {script: f"#!/bin/sh\n{body}\n" for script, body in scripts.items()},
                executable=True,
            )

        data = {"type": "plugin", "name": name, "version": version, "content": content}
        if depends is not None:
            data["depends"] = depends
        if jar_files is not None:
            data["jar-files"] = jar_files
        metadata = PluginMetadata.from_dict(data)

        output = build_dir / f"{name}-{version}.rpkg"
        return Rpkg.create(output, metadata, sources, paths.packages_folder, scripts_dir=scripts_dir)

    return _make


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop RUDDER_PKG_ variables inherited from the environment."""
    for key in list(os.environ):
        if key.startswith("RUDDER_PKG_"):
            monkeypatch.delenv(key)
