"""
Configuration file support for pkgsnap.

Loads settings from ``~/.config/pkgsnap/config.yaml`` (or
``$XDG_CONFIG_HOME/pkgsnap/config.yaml``) and exposes them as a typed
dataclass that the CLI can merge with environment variables and flags.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from pkgsnap.platform import default_cache_dir, default_db_dir, default_pkg_binary
from pkgsnap.restore import DEFAULT_MAX_ATTEMPTS

logger = logging.getLogger("pkgsnap.config")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def default_config_path() -> Path:
    """Return the default configuration file path.

    Uses ``$XDG_CONFIG_HOME/pkgsnap/config.yaml`` when set, otherwise
    falls back to ``~/.config/pkgsnap/config.yaml``.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "pkgsnap" / "config.yaml"
    return Path.home() / ".config" / "pkgsnap" / "config.yaml"


@dataclass
class PkgsnapConfig:
    """Top-level configuration loaded from the YAML file."""

    pkg_binary: str = field(default_factory=default_pkg_binary)
    db_dir: Path = field(default_factory=default_db_dir)
    cache_dir: Path = field(default_factory=default_cache_dir)
    repository: Optional[str] = None
    assume_yes: bool = False
    autoclean: bool = True
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PkgsnapConfig":
        """Construct a ``PkgsnapConfig`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        config = cls()
        if data.get("pkg_binary"):
            config.pkg_binary = str(data["pkg_binary"])
        if data.get("db_dir"):
            config.db_dir = Path(data["db_dir"]).expanduser()
        if data.get("cache_dir"):
            config.cache_dir = Path(data["cache_dir"]).expanduser()
        if data.get("repository"):
            config.repository = str(data["repository"])
        if "assume_yes" in data:
            config.assume_yes = bool(data["assume_yes"])
        if "autoclean" in data:
            config.autoclean = bool(data["autoclean"])

        max_attempts = data.get("max_attempts")
        if max_attempts is not None:
            if isinstance(max_attempts, int) and max_attempts > 0:
                config.max_attempts = max_attempts
            else:
                logger.warning("Ignoring invalid max_attempts: %s", max_attempts)

        return config

    @classmethod
    def from_file(cls, path: Path) -> "PkgsnapConfig":
        """Read a YAML file and return a ``PkgsnapConfig``.

        Returns a default config on any error.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "PkgsnapConfig":
        """Main entry point: load config from *config_path* or the default location.

        Returns a default config if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)

    def with_env(self) -> "PkgsnapConfig":
        """Return a copy with environment variable overrides applied.

        ``PKG_DBDIR`` and ``PKG_CACHEDIR`` are the variables pkg itself reads.
        """
        config = replace(self)
        if os.environ.get("PKG_DBDIR"):
            config.db_dir = Path(os.environ["PKG_DBDIR"])
        if os.environ.get("PKG_CACHEDIR"):
            config.cache_dir = Path(os.environ["PKG_CACHEDIR"])
        if os.environ.get("PKGSNAP_REPOSITORY"):
            config.repository = os.environ["PKGSNAP_REPOSITORY"]
        if "PKGSNAP_ASSUME_YES" in os.environ:
            config.assume_yes = (
                os.environ["PKGSNAP_ASSUME_YES"].strip().lower() in _TRUE_VALUES
            )
        return config
