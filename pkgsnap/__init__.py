"""
pkgsnap - snapshot installed packages and restore a host to the snapshot.

Dump what is installed, replay it anywhere through the package installer.
"""

from importlib.metadata import version as _version

__version__ = _version("pkgsnap")
