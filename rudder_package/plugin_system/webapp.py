"""Editor for the Jetty context file of the Rudder web application.

Plugin jars are loaded through the comma separated value of the
``<Set name="extraClasspath">`` element. Enabling or disabling a jar rewrites
that value; the XML declaration and doctype in front of the root element are
kept verbatim.
"""

from __future__ import annotations

import re
import subprocess
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from rudder_package.core.logging_manager import get_logger
from rudder_package.utils.exceptions import WebappError

logger = get_logger(__name__)

_ROOT_START_RE = re.compile(r"<(?![?!])")
_ENCODING_RE = re.compile(r"""encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")


class Webapp:
    """Host configuration editor.

    Attributes:
        path: Path to the Jetty context XML file
        restart_command: Command applying pending changes, empty to skip
        pending_changes: Whether jars were enabled or disabled since the last apply
    """

    CLASSPATH_SETTING = "extraClasspath"

    def __init__(self, path: Union[str, Path], restart_command: Optional[Sequence[str]] = None) -> None:
        self.path = Path(path)
        self.restart_command = list(restart_command or [])
        self.pending_changes = False

    def _load(self) -> Tuple[str, ET.Element, str]:
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise WebappError(f"Cannot read {self.path}: {e}", path=str(self.path)) from e

        head = data[:200].decode("ascii", errors="ignore")
        match = _ENCODING_RE.search(head.split("?>", 1)[0]) if head.startswith("<?xml") else None
        encoding = match.group(1) if match else "utf-8"

        try:
            text = data.decode(encoding)
        except (LookupError, UnicodeDecodeError) as e:
            raise WebappError(f"Cannot decode {self.path} as {encoding}: {e}", path=str(self.path)) from e

        start = _ROOT_START_RE.search(text)
        if start is None:
            raise WebappError(f"{self.path} has no root element", path=str(self.path))

        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            root = ET.fromstring(text[start.start():], parser=parser)
        except ET.ParseError as e:
            raise WebappError(f"Cannot parse {self.path}: {e}", path=str(self.path)) from e
        return text[:start.start()], root, encoding

    def _save(self, prolog: str, root: ET.Element, encoding: str) -> None:
        body = ET.tostring(root, encoding="unicode", xml_declaration=False)
        try:
            self.path.write_text(prolog + body + "\n", encoding=encoding, errors="xmlcharrefreplace")
        except OSError as e:
            raise WebappError(f"Cannot write {self.path}: {e}", path=str(self.path)) from e

    def _classpath_element(self, root: ET.Element) -> Optional[ET.Element]:
        for element in root.iter("Set"):
            if element.get("name") == self.CLASSPATH_SETTING:
                return element
        return None

    @staticmethod
    def _split(value: Optional[str]) -> List[str]:
        return [jar.strip() for jar in (value or "").split(",") if jar.strip()]

    def jars(self) -> List[str]:
        """Jars currently on the web application classpath."""
        _, root, _ = self._load()
        element = self._classpath_element(root)
        return self._split(element.text if element is not None else None)

    def enable_jar(self, jar: str) -> bool:
        """Add a jar to the classpath.

        Returns:
            True if the file changed, False if the jar was already enabled

        Raises:
            WebappError: If the file cannot be read, parsed or written
        """
        prolog, root, encoding = self._load()
        element = self._classpath_element(root)
        if element is None:
            element = ET.SubElement(root, "Set", {"name": self.CLASSPATH_SETTING})

        jars = self._split(element.text)
        if jar in jars:
            logger.debug("Jar already enabled", jar=jar)
            return False

        jars.append(jar)
        element.text = ",".join(jars)
        self._save(prolog, root, encoding)
        self.pending_changes = True
        logger.info("Enabled jar", jar=jar)
        return True

    def disable_jar(self, jar: str) -> bool:
        """Remove a jar from the classpath.

        Returns:
            True if the file changed, False if the jar was not enabled
        """
        prolog, root, encoding = self._load()
        element = self._classpath_element(root)
        jars = self._split(element.text if element is not None else None)
        if jar not in jars:
            logger.debug("Jar not enabled", jar=jar)
            return False

        element.text = ",".join(j for j in jars if j != jar)
        self._save(prolog, root, encoding)
        self.pending_changes = True
        logger.info("Disabled jar", jar=jar)
        return True

    def apply_changes(self) -> bool:
        """Run the restart command once if changes are pending.

        Returns:
            True if the restart command ran

        Raises:
            WebappError: If the restart command cannot be run or fails
        """
        if not self.pending_changes:
            return False
        if not self.restart_command:
            logger.info("Web application changes pending, no restart command configured")
            self.pending_changes = False
            return False

        logger.info("Restarting the web application", command=" ".join(self.restart_command))
        try:
            subprocess.run(self.restart_command, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise WebappError(
                f"Web application restart failed with exit code {e.returncode}: {e.stderr.strip()}",
                path=str(self.path),
            ) from e
        except OSError as e:
            raise WebappError(f"Could not run the web application restart command: {e}", path=str(self.path)) from e

        self.pending_changes = False
        return True
