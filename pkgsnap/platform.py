"""
Platform detection helpers for pkgsnap.

Centralizes FreeBSD vs other-system differences so the rest of the codebase
can call simple functions instead of scattering ``sys.platform`` checks.
"""

import sys
from pathlib import Path


def is_freebsd() -> bool:
    """Return True when running on FreeBSD."""
    return sys.platform.startswith("freebsd")


def default_db_dir() -> Path:
    """Return the platform-appropriate package database directory."""
    return Path("/var/db/pkg")


def default_cache_dir() -> Path:
    """Return the platform-appropriate package cache directory."""
    return Path("/var/cache/pkg")


def default_pkg_binary() -> str:
    """Return the pkg binary to run on the current platform."""
    if is_freebsd():
        return "/usr/sbin/pkg"
    return "pkg"
