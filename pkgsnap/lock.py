"""
Advisory locking of the package database.

Locks are taken with ``flock(2)`` on the database's lock path, a file or a
directory opened read-only, and never wait: an incompatible holder makes
``acquire`` fail immediately with ``LockBusyError``. READONLY locks are
shared, EXCLUSIVE locks are not.
"""

import fcntl
import logging
import os
from types import TracebackType
from typing import Optional, Type

from pkgsnap.backend import LockMode, PackageDatabase
from pkgsnap.errors import AccessDeniedError, LockBusyError

logger = logging.getLogger("pkgsnap.lock")

_FLOCK_OPS = {
    LockMode.READONLY: fcntl.LOCK_SH,
    LockMode.EXCLUSIVE: fcntl.LOCK_EX,
}


class LockHandle:
    """A held lock; release it before closing the database."""

    def __init__(self, database: PackageDatabase, mode: LockMode, fd: int):
        self.database = database
        self.mode = mode
        self._fd: Optional[int] = fd

    @property
    def released(self) -> bool:
        return self._fd is None

    def release(self) -> None:
        """Release the lock. Calling this more than once is harmless."""
        if self._fd is None:
            return
        if not self.database.is_open:
            raise RuntimeError("Lock released after the package database was closed")

        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug(f"Released {self.mode.value} lock on {self.database.lock_path}")

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


class LockManager:
    """Acquires mode-typed advisory locks on a package database."""

    def _open_lock_file(self, database: PackageDatabase) -> int:
        path = database.lock_path
        try:
            # flock works on read-only descriptors, so existing paths need no
            # write access
            return os.open(path, os.O_RDONLY)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise AccessDeniedError(
                f"Insufficient privileges to lock the package database: {e}"
            ) from e

        try:
            database.create_lock_path()
            return os.open(path, os.O_RDONLY)
        except OSError as e:
            raise AccessDeniedError(
                f"Insufficient privileges to lock the package database: {e}"
            ) from e

    def acquire(self, database: PackageDatabase, mode: LockMode) -> LockHandle:
        """
        Take a lock without blocking.

        Args:
            database: An open package database
            mode: READONLY or EXCLUSIVE

        Returns:
            The held lock

        Raises:
            LockBusyError: Another process holds an incompatible lock.
        """
        if not database.is_open:
            raise RuntimeError("Cannot lock a package database that is not open")

        fd = self._open_lock_file(database)
        try:
            fcntl.flock(fd, _FLOCK_OPS[mode] | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockBusyError(
                "Cannot get an advisory lock on a database, "
                "it is locked by another process"
            ) from None
        except OSError:
            os.close(fd)
            raise

        logger.debug(f"Acquired {mode.value} lock on {database.lock_path}")
        return LockHandle(database, mode, fd)
