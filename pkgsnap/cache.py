"""
Post-restore cleanup of the package cache.
"""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger("pkgsnap.cache")


class CacheReconciler:
    """Removes staged package artifacts once a restore has been applied."""

    def __init__(self, cache_dir: Path, enabled: bool = True):
        self.cache_dir = cache_dir
        self.enabled = enabled

    def reconcile(self) -> int:
        """
        Empty the cache directory.

        Returns:
            Number of entries removed. Failures are logged, not raised.
        """
        if not self.enabled:
            logger.debug("Cache autoclean disabled, keeping cached packages")
            return 0
        if not self.cache_dir.is_dir():
            logger.debug(f"No package cache at {self.cache_dir}")
            return 0

        removed = 0
        for entry in self.cache_dir.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove cached {entry}: {e}")

        logger.info(f"Removed {removed} cached entries from {self.cache_dir}")
        return removed
