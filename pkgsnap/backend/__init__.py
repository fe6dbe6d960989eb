"""
Backend package for pkgsnap.

This module provides the interfaces pkgsnap drives: the package database
(access check, open, query, close) and the dependency resolver (job sets that
are built, solved and applied). Implementations live in submodules.
"""

import abc
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Iterator, List, Optional, Sequence


class LockMode(Enum):
    """Advisory lock modes on the package database."""

    READONLY = "readonly"
    EXCLUSIVE = "exclusive"


class AccessMode(Flag):
    """Access requested when checking the package database."""

    READ = auto()
    WRITE = auto()
    CREATE = auto()


class DatabaseScope(Flag):
    """Which databases an access check covers."""

    LOCAL = auto()
    REPO = auto()


class MatchMode(Enum):
    """How target identifiers are matched against package names."""

    EXACT = "exact"
    GLOB = "glob"


class JobKind(Enum):
    """Kinds of resolver requests."""

    INSTALL = "install"


class ApplyStatus(Enum):
    """Result of applying a solved job set."""

    OK = "ok"
    CONFLICT = "conflict"
    FATAL = "fatal"


@dataclass(frozen=True)
class InstalledPackage:
    """Basic metadata of a locally installed package."""

    name: str
    version: str

    @property
    def identifier(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True)
class PlannedAction:
    """One step of a solved installation plan."""

    kind: str
    name: str
    version: str
    new_version: Optional[str] = None

    def describe(self) -> str:
        if self.new_version:
            return f"{self.name}: {self.version} -> {self.new_version}"
        return f"{self.name}: {self.version}"


@dataclass(frozen=True)
class JobFlags:
    """Operation flags applied to a job set."""

    dry_run: bool = False
    # Installed version must satisfy the requested one, not just the name.
    version_test: bool = True


class PackageDatabase(abc.ABC):
    """Base class for package databases."""

    @property
    @abc.abstractmethod
    def lock_path(self) -> Path:
        """File or directory used for advisory locking of this database."""
        pass

    def create_lock_path(self) -> None:
        """Create the lock path when it does not exist yet."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_path.touch(exist_ok=True)

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        pass

    @abc.abstractmethod
    def access(self, mode: AccessMode, scope: DatabaseScope) -> None:
        """
        Check that the database can be used in the requested mode.

        Raises:
            NoDatabaseError: The database does not exist.
            AccessDeniedError: The caller lacks the required privileges.
        """
        pass

    @abc.abstractmethod
    def open(self, repository: Optional[str] = None) -> None:
        """Open the database, optionally scoped to a named remote repository."""
        pass

    @abc.abstractmethod
    def close(self) -> None:
        pass

    @abc.abstractmethod
    def query_installed(self) -> List[InstalledPackage]:
        """Return every locally installed package, in database order."""
        pass

    @contextmanager
    def session(self, repository: Optional[str] = None) -> Iterator["PackageDatabase"]:
        """Open the database for the duration of a ``with`` block."""
        self.open(repository)
        try:
            yield self
        finally:
            self.close()


class JobSet(abc.ABC):
    """A resolver request consumed by one solve/apply cycle."""

    def __init__(self, kind: JobKind, flags: JobFlags):
        self.kind = kind
        self.flags = flags

    @abc.abstractmethod
    def add(self, match: MatchMode, targets: Sequence[str]) -> None:
        """Append targets to the request."""
        pass

    @abc.abstractmethod
    def solve(self) -> None:
        """
        Compute the installation plan.

        Raises:
            UnsatisfiableTargetsError: Some targets cannot be satisfied at all.
        """
        pass

    @property
    @abc.abstractmethod
    def actions(self) -> List[PlannedAction]:
        """The solved plan; empty when nothing needs to change."""
        pass

    @abc.abstractmethod
    def total(self) -> int:
        """Number of packages the resolver checked."""
        pass

    @abc.abstractmethod
    def apply(self) -> ApplyStatus:
        """Apply the solved plan to the database."""
        pass

    @property
    @abc.abstractmethod
    def messages(self) -> List[str]:
        """Post-install messages accumulated while applying."""
        pass

    @property
    def error(self) -> Optional[str]:
        """Details of the last failed apply, if the backend has any."""
        return None


class Resolver(abc.ABC):
    """Base class for dependency resolvers."""

    @abc.abstractmethod
    def new_job_set(self, kind: JobKind, flags: JobFlags) -> JobSet:
        pass
