"""
Shared fixtures: an in-memory package database and resolver.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

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
from pkgsnap.errors import PkgsnapError, UnsatisfiableTargetsError


class FakeDatabase(PackageDatabase):
    """Package database holding installed packages in a dict."""

    def __init__(self, lock_dir: Path):
        self.installed: Dict[str, str] = {}
        self.events: List[str] = []
        self.access_calls: List[AccessMode] = []
        self.access_error: Optional[PkgsnapError] = None
        self.repository: Optional[str] = None
        self._lock_path = lock_dir / "db.lock"
        self._open = False

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    @property
    def is_open(self) -> bool:
        return self._open

    def access(self, mode: AccessMode, scope: DatabaseScope) -> None:
        self.access_calls.append(mode)
        if self.access_error is not None:
            raise self.access_error

    def open(self, repository: Optional[str] = None) -> None:
        self.repository = repository
        self._open = True
        self.events.append("open")

    def close(self) -> None:
        self._open = False
        self.events.append("close")

    def query_installed(self) -> List[InstalledPackage]:
        return [InstalledPackage(n, v) for n, v in self.installed.items()]


class FakeJobSet(JobSet):
    def __init__(self, resolver: "FakeResolver", kind: JobKind, flags: JobFlags):
        super().__init__(kind, flags)
        self.resolver = resolver
        self.targets: List[str] = []
        self.match: Optional[MatchMode] = None
        self._actions: List[PlannedAction] = []
        self._messages: List[str] = []

    def add(self, match: MatchMode, targets: Sequence[str]) -> None:
        self.match = match
        self.targets.extend(targets)

    def solve(self) -> None:
        installed = self.resolver.database.installed
        actions = []
        for target in dict.fromkeys(self.targets):
            if target not in self.resolver.available:
                raise UnsatisfiableTargetsError(f"No package matches {target}")
            name, _, version = target.rpartition("-")
            if installed.get(name) == version:
                continue
            if name in installed:
                actions.append(
                    PlannedAction("upgraded", name, installed[name], version)
                )
            else:
                actions.append(PlannedAction("installed", name, version))
        self._actions = actions

    @property
    def actions(self) -> List[PlannedAction]:
        return list(self._actions)

    def total(self) -> int:
        return len(self.targets)

    def apply(self) -> ApplyStatus:
        if self.flags.dry_run:
            raise RuntimeError("A dry-run job set cannot be applied")
        self.resolver.applied += 1
        status = (
            self.resolver.apply_results.pop(0)
            if self.resolver.apply_results
            else ApplyStatus.OK
        )
        database = self.resolver.database
        if status is ApplyStatus.CONFLICT:
            if self.resolver.conflict_makes_progress and self._actions:
                first = self._actions[0]
                database.installed[first.name] = first.new_version or first.version
            return status
        if status is ApplyStatus.OK:
            for action in self._actions:
                database.installed[action.name] = action.new_version or action.version
            self._messages = list(self.resolver.messages)
        return status

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    @property
    def error(self) -> Optional[str]:
        return "simulated failure"


class FakeResolver(Resolver):
    """Resolver that installs whatever is listed as available."""

    def __init__(self, database: FakeDatabase):
        self.database = database
        self.available: set = set()
        self.apply_results: List[ApplyStatus] = []
        self.conflict_makes_progress = True
        self.messages: List[str] = []
        self.job_sets: List[FakeJobSet] = []
        self.applied = 0

    def new_job_set(self, kind: JobKind, flags: JobFlags) -> FakeJobSet:
        jobs = FakeJobSet(self, kind, flags)
        self.job_sets.append(jobs)
        return jobs


@pytest.fixture
def fake_db(tmp_path: Path) -> FakeDatabase:
    """Fixture to create an empty in-memory package database."""
    return FakeDatabase(tmp_path)


@pytest.fixture
def fake_resolver(fake_db: FakeDatabase) -> FakeResolver:
    """Fixture to create a resolver bound to ``fake_db``."""
    return FakeResolver(fake_db)
