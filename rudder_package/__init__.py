"""rudder-package: client for installing and removing Rudder plugin packages."""

from rudder_package.__version__ import __version__

__all__ = ["__version__"]
