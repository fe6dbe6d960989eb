"""
Error taxonomy for pkgsnap.

Every failure a command can report carries an ``ErrorKind`` so that the CLI
and the restore result share one tagged error type instead of integer codes.
"""

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure surfaced by dump and restore."""

    ACCESS_DENIED = "access_denied"
    NO_DATABASE = "no_database"
    LOCK_BUSY = "lock_busy"
    PARSE_ERROR = "parse_error"
    UNSATISFIABLE_TARGETS = "unsatisfiable_targets"
    APPLY_CONFLICT = "apply_conflict"
    APPLY_FAILED = "apply_failed"
    IO_ERROR = "io_error"


class PkgsnapError(Exception):
    """Base class for all pkgsnap errors."""

    kind: ErrorKind = ErrorKind.APPLY_FAILED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AccessDeniedError(PkgsnapError):
    kind = ErrorKind.ACCESS_DENIED


class NoDatabaseError(PkgsnapError):
    kind = ErrorKind.NO_DATABASE


class LockBusyError(PkgsnapError):
    kind = ErrorKind.LOCK_BUSY


class SnapshotParseError(PkgsnapError):
    kind = ErrorKind.PARSE_ERROR


class UnsatisfiableTargetsError(PkgsnapError):
    kind = ErrorKind.UNSATISFIABLE_TARGETS


class ApplyConflictError(PkgsnapError):
    """Raised only when the conflict retry loop gives up."""

    kind = ErrorKind.APPLY_CONFLICT


class ApplyFailedError(PkgsnapError):
    kind = ErrorKind.APPLY_FAILED


class SnapshotIOError(PkgsnapError):
    kind = ErrorKind.IO_ERROR
