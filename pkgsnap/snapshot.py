"""
Snapshot reading and writing for pkgsnap.

A snapshot is the ordered list of ``name-version`` identifiers of the
installed packages, stored as a top-level JSON array.
"""

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO, Tuple, Union

import orjson  # High-performance JSON parser

from pkgsnap.backend import PackageDatabase
from pkgsnap.errors import SnapshotIOError, SnapshotParseError

logger = logging.getLogger("pkgsnap.snapshot")

Snapshot = Tuple[str, ...]


def read_installed(database: PackageDatabase) -> Snapshot:
    """Query the installed packages and return their identifiers in order."""
    snapshot = tuple(pkg.identifier for pkg in database.query_installed())
    logger.info(f"Captured {len(snapshot)} installed packages")
    return snapshot


def dumps_snapshot(snapshot: Snapshot) -> str:
    return orjson.dumps(list(snapshot)).decode("utf-8") + "\n"


def write_snapshot(snapshot: Snapshot, sink: TextIO) -> None:
    """
    Serialize a snapshot to an open text sink.

    The caller owns the sink and is responsible for syncing and closing it.
    """
    try:
        sink.write(dumps_snapshot(snapshot))
    except OSError as e:
        raise SnapshotIOError(f"Failed to write snapshot: {e}") from e


def parse_snapshot(source: Union[str, bytes]) -> Snapshot:
    """
    Parse a snapshot document.

    Args:
        source: The document text

    Returns:
        The identifiers, in document order

    Raises:
        SnapshotParseError: The document is not an array of strings.
    """
    try:
        data = orjson.loads(source)
    except orjson.JSONDecodeError as e:
        raise SnapshotParseError(f"Snapshot is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise SnapshotParseError(
            f"Snapshot must be an array of package identifiers, "
            f"got {type(data).__name__}"
        )

    for index, item in enumerate(data):
        if not isinstance(item, str):
            raise SnapshotParseError(
                f"Snapshot entry {index} is {type(item).__name__}, expected a string"
            )

    return tuple(data)


def load_snapshot(path: Path) -> Snapshot:
    """Read and parse the snapshot stored at *path*."""
    try:
        with open(path, "rb") as f:
            source = f.read()
    except OSError as e:
        raise SnapshotIOError(f"Failed to read snapshot {path}: {e}") from e

    snapshot = parse_snapshot(source)
    logger.debug(f"Loaded {len(snapshot)} identifiers from {path}")
    return snapshot


@contextmanager
def durable_output(path: Optional[Path]) -> Iterator[TextIO]:
    """
    Yield a sink for *path*, or standard output when *path* is None.

    Files are flushed, synced to stable storage and closed on exit. A sync or
    close failure is raised as ``SnapshotIOError``.
    """
    if path is None:
        yield sys.stdout
        sys.stdout.flush()
        return

    try:
        handle = open(path, "w")
    except OSError as e:
        raise SnapshotIOError(f"Failed to open {path} for writing: {e}") from e

    try:
        yield handle
        try:
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            raise SnapshotIOError(f"Failed to sync {path}: {e}") from e
    finally:
        try:
            handle.close()
        except OSError as e:
            raise SnapshotIOError(f"Failed to close {path}: {e}") from e
