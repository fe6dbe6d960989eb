"""
pkg(8) backend for pkgsnap.

This module binds the database and resolver interfaces to the FreeBSD ``pkg``
command line, handling subprocess calls and parsing of its plan output.

The advisory lock is taken on the database directory. It keeps
pkgsnap invocations apart from each other; a concurrent ``pkg`` run is not
excluded by it and is left to pkg's own database locking.
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from pkgsnap.backend import (
    AccessMode,
    ApplyStatus,
    DatabaseScope,
    InstalledPackage,
    JobFlags,
    JobKind,
    JobSet,
    MatchMode,
    PackageDatabase,
    PlannedAction,
    Resolver,
)
from pkgsnap.errors import (
    AccessDeniedError,
    NoDatabaseError,
    SnapshotIOError,
    UnsatisfiableTargetsError,
)

logger = logging.getLogger("pkgsnap.backend.pkgng")

LOCAL_DB_NAME = "local.sqlite"

_SUMMARY_RE = re.compile(
    r"The following (\d+) package\(s\) will be affected \(of (\d+) checked\)"
)
_SECTION_RE = re.compile(r"^\S.* to be (?P<kind>[A-Z]+):\s*$")
_CHANGE_RE = re.compile(
    r"^\s+(?P<name>[^\s:]+):\s+(?P<version>\S+)(?:\s+->\s+(?P<new>\S+))?"
)
_IDENT_RE = re.compile(r"^\s+(?P<name>\S+)-(?P<version>[^-\s]+)(?:\s|$)")

UP_TO_DATE_MARKER = "already installed"
NO_MATCH_MARKER = "No packages available to install matching"
CONFLICT_MARKER = "Conflicts with the existing packages"
MESSAGE_MARKER = "Message from "


def parse_plan(output: str) -> Tuple[List[PlannedAction], int]:
    """
    Parse the plan printed by ``pkg install --dry-run``.

    Args:
        output: Captured stdout of the dry run

    Returns:
        Tuple of (actions, number of packages checked)
    """
    actions: List[PlannedAction] = []
    checked = 0
    kind: Optional[str] = None

    for line in output.splitlines():
        summary = _SUMMARY_RE.search(line)
        if summary:
            checked = int(summary.group(2))
            continue

        section = _SECTION_RE.match(line)
        if section:
            kind = section.group("kind").lower()
            continue

        if not line.strip():
            continue

        if kind is None or not line[0].isspace():
            # Anything unindented ends the current section
            kind = None
            continue

        change = _CHANGE_RE.match(line)
        if change:
            actions.append(
                PlannedAction(
                    kind=kind,
                    name=change.group("name"),
                    version=change.group("version"),
                    new_version=change.group("new"),
                )
            )
            continue

        ident = _IDENT_RE.match(line)
        if ident:
            actions.append(
                PlannedAction(
                    kind=kind, name=ident.group("name"), version=ident.group("version")
                )
            )
        else:
            logger.debug(f"Ignoring unrecognised plan line: {line!r}")

    return actions, checked


def parse_messages(output: str) -> List[str]:
    """Extract the ``Message from <pkg>`` blocks printed after an install."""
    messages: List[str] = []
    current: Optional[List[str]] = None

    for line in output.splitlines():
        if line.startswith(MESSAGE_MARKER):
            if current:
                messages.append("\n".join(current).strip())
            current = [line]
        elif line.startswith("====="):
            if current:
                messages.append("\n".join(current).strip())
            current = None
        elif current is not None:
            current.append(line)

    if current:
        messages.append("\n".join(current).strip())
    return messages


class PkgngDatabase(PackageDatabase):
    """Package database managed by ``pkg``."""

    def __init__(
        self,
        db_dir: Path,
        cache_dir: Optional[Path] = None,
        binary_path: str = "pkg",
    ):
        """
        Initialize the database wrapper.

        Args:
            db_dir: Directory holding ``local.sqlite`` and repository catalogues
            cache_dir: Package cache directory handed to ``pkg``
            binary_path: Path to the ``pkg`` binary
        """
        self.db_dir = db_dir
        self.cache_dir = cache_dir
        self.binary_path = binary_path
        self.repository: Optional[str] = None
        self._open = False

    @property
    def lock_path(self) -> Path:
        # The directory always exists once the database does and is readable by
        # anyone allowed to read the database, so readers never need to create
        # anything
        return self.db_dir

    def create_lock_path(self) -> None:
        self.db_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_open(self) -> bool:
        return self._open

    def access(self, mode: AccessMode, scope: DatabaseScope) -> None:
        db_file = self.db_dir / LOCAL_DB_NAME

        if not db_file.exists():
            if not (mode & AccessMode.CREATE):
                raise NoDatabaseError(f"No package database at {db_file}")
            # Creating requires a writable directory, or a writable parent
            parent = self.db_dir
            while not parent.exists() and parent != parent.parent:
                parent = parent.parent
            if not os.access(parent, os.W_OK):
                raise AccessDeniedError(
                    f"Insufficient privileges to create the package database in "
                    f"{self.db_dir}"
                )
        else:
            wanted = os.R_OK
            if mode & AccessMode.WRITE:
                wanted |= os.W_OK
            if not os.access(db_file, wanted):
                raise AccessDeniedError(
                    f"Insufficient privileges to access the package database {db_file}"
                )

        if scope & DatabaseScope.REPO:
            repos_dir = self.db_dir / "repos"
            if repos_dir.exists() and not os.access(repos_dir, os.R_OK):
                raise AccessDeniedError(
                    f"Insufficient privileges to read repository catalogues in "
                    f"{repos_dir}"
                )

    def open(self, repository: Optional[str] = None) -> None:
        if shutil.which(self.binary_path) is None:
            raise NoDatabaseError(
                f"`{self.binary_path}` command not found. Is pkg installed and in "
                f"your PATH?"
            )
        self.repository = repository
        self._open = True
        logger.debug(f"Opened package database at {self.db_dir}")

    def close(self) -> None:
        if self._open:
            logger.debug(f"Closed package database at {self.db_dir}")
        self._open = False

    def _get_env(self) -> Dict[str, str]:
        """Get the environment variables for pkg commands."""
        env = os.environ.copy()
        env["PKG_DBDIR"] = str(self.db_dir)
        if self.cache_dir:
            env["PKG_CACHEDIR"] = str(self.cache_dir)
        return env

    def run_command(self, args: List[str]) -> Tuple[int, str, str]:
        """
        Run a pkg command against this database.

        Args:
            args: Command arguments

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        if not self._open:
            raise RuntimeError("Package database is not open")

        cmd = [self.binary_path] + args
        cmd_str = " ".join(shlex.quote(str(arg)) for arg in cmd)
        logger.debug(f"Running command: {cmd_str}")

        try:
            result = subprocess.run(
                cmd,
                env=self._get_env(),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise NoDatabaseError(f"`{self.binary_path}` command not found") from e
        except OSError as e:
            raise SnapshotIOError(f"Failed to run {cmd_str}: {e}") from e

        if result.returncode != 0:
            logger.debug(f"Command {cmd_str} exited with {result.returncode}")
        return result.returncode, result.stdout or "", result.stderr or ""

    def query_installed(self) -> List[InstalledPackage]:
        returncode, stdout, stderr = self.run_command(["query", "-a", "%n\t%v"])
        if returncode != 0:
            raise SnapshotIOError(
                f"Failed to query installed packages: {stderr.strip()}"
            )

        packages = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            name, _, version = line.partition("\t")
            packages.append(InstalledPackage(name=name, version=version))
        logger.debug(f"Found {len(packages)} installed packages")
        return packages


class PkgngJobSet(JobSet):
    """Install request carried out by ``pkg install``."""

    def __init__(self, database: PkgngDatabase, kind: JobKind, flags: JobFlags):
        super().__init__(kind, flags)
        self.database = database
        self.match = MatchMode.EXACT
        self.targets: List[str] = []
        self._actions: List[PlannedAction] = []
        self._total = 0
        self._messages: List[str] = []
        self._error: Optional[str] = None
        self._solved = False

    def add(self, match: MatchMode, targets: Sequence[str]) -> None:
        self.match = match
        self.targets.extend(targets)

    def _install_args(self) -> List[str]:
        args = [self.kind.value, "--yes"]
        if self.match is MatchMode.GLOB:
            args.append("--glob")
        if self.database.repository:
            args += ["--repository", self.database.repository]
        return args

    def solve(self) -> None:
        self._solved = True
        if not self.targets:
            self._actions, self._total = [], 0
            return

        args = self._install_args() + ["--dry-run"] + self.targets
        returncode, stdout, stderr = self.database.run_command(args)
        combined = stdout + stderr

        if NO_MATCH_MARKER in combined:
            raise UnsatisfiableTargetsError(stderr.strip() or stdout.strip())

        actions, checked = parse_plan(stdout)
        # pkg exits 1 from --dry-run when there is something to do
        if not actions and returncode != 0 and UP_TO_DATE_MARKER not in combined:
            raise UnsatisfiableTargetsError(
                f"Cannot satisfy the requested packages: "
                f"{stderr.strip() or stdout.strip()}"
            )
        self._actions, self._total = actions, checked or len(self.targets)

    @property
    def actions(self) -> List[PlannedAction]:
        if not self._solved:
            raise RuntimeError("Job set has not been solved")
        return list(self._actions)

    def total(self) -> int:
        return self._total

    def apply(self) -> ApplyStatus:
        if self.flags.dry_run:
            raise RuntimeError("A dry-run job set cannot be applied")
        if not self._solved:
            raise RuntimeError("Job set has not been solved")

        returncode, stdout, stderr = self.database.run_command(
            self._install_args() + self.targets
        )
        self._messages = parse_messages(stdout)

        if returncode == 0:
            return ApplyStatus.OK
        # pkg re-solves conflicts itself and exits 0 when that succeeds
        if CONFLICT_MARKER in stdout + stderr:
            return ApplyStatus.CONFLICT
        self._error = stderr.strip() or f"pkg exited with code {returncode}"
        return ApplyStatus.FATAL

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    @property
    def error(self) -> Optional[str]:
        return self._error


class PkgngResolver(Resolver):
    """Resolver backed by the ``pkg`` solver."""

    def __init__(self, database: PkgngDatabase):
        self.database = database

    def new_job_set(self, kind: JobKind, flags: JobFlags) -> PkgngJobSet:
        return PkgngJobSet(self.database, kind, flags)
