from __future__ import annotations

import os
import sys
from typing import List, Optional

from rudder_package.plugin_system.cli import main as cli_main


def main(args: Optional[List[str]] = None) -> int:
    """Entry point of the ``rudder-package`` command."""
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
    try:
        return cli_main(args)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
