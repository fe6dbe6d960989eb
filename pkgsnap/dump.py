"""
Dump the installed packages to a snapshot.
"""

import logging
from pathlib import Path
from typing import Optional

from pkgsnap.backend import AccessMode, DatabaseScope, LockMode, PackageDatabase
from pkgsnap.errors import NoDatabaseError
from pkgsnap.lock import LockManager
from pkgsnap.snapshot import Snapshot, durable_output, read_installed, write_snapshot

logger = logging.getLogger("pkgsnap.dump")


def dump_installed(
    database: PackageDatabase,
    output: Optional[Path] = None,
    lock_manager: Optional[LockManager] = None,
) -> Snapshot:
    """
    Write the identifiers of all installed packages to *output*.

    Args:
        database: Package database to query
        output: Destination file, standard output when None
        lock_manager: Lock manager to use

    Returns:
        The snapshot that was written
    """
    lock_manager = lock_manager or LockManager()

    try:
        database.access(AccessMode.READ, DatabaseScope.LOCAL)
    except NoDatabaseError as e:
        logger.warning(f"No packages installed.  Nothing to do! ({e})")
        snapshot: Snapshot = ()
    else:
        with database.session():
            with lock_manager.acquire(database, LockMode.READONLY):
                snapshot = read_installed(database)

    with durable_output(output) as sink:
        write_snapshot(snapshot, sink)

    if output is not None:
        logger.info(f"Wrote {len(snapshot)} package identifiers to {output}")
    return snapshot
