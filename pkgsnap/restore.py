"""
Restore orchestration for pkgsnap.

Turns a snapshot into an install request, drives the resolver and applies the
plan under an advisory lock, re-solving when the apply hits a conflict.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pkgsnap.backend import (
    AccessMode,
    ApplyStatus,
    DatabaseScope,
    JobFlags,
    JobKind,
    LockMode,
    MatchMode,
    PackageDatabase,
    PlannedAction,
    Resolver,
)
from pkgsnap.cache import CacheReconciler
from pkgsnap.errors import ApplyConflictError, ApplyFailedError, PkgsnapError
from pkgsnap.gate import Decision, Prompter, SummaryPrinter, decide
from pkgsnap.lock import LockManager
from pkgsnap.snapshot import Snapshot, load_snapshot

logger = logging.getLogger("pkgsnap.restore")

DEFAULT_MAX_ATTEMPTS = 10


class RestoreState(Enum):
    INIT = "init"
    DATABASE_OPENED = "database_opened"
    LOCKED = "locked"
    REQUEST_BUILT = "request_built"
    SOLVED = "solved"
    NO_CHANGES_NEEDED = "no_changes_needed"
    DECLINED = "declined"
    APPLYING = "applying"
    APPLIED = "applied"
    CONFLICT_RETRY = "conflict_retry"
    FAILED = "failed"


class Outcome(Enum):
    """Result of a restore."""

    NO_CHANGES_NEEDED = "no_changes_needed"
    APPLIED = "applied"
    CONFLICT_NEEDS_RETRY = "conflict_needs_retry"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass
class RestoreOptions:
    """Flags for one restore invocation."""

    dry_run: bool = False
    quiet: bool = False
    repository: Optional[str] = None
    version_test: bool = True
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


@dataclass
class RestoreResult:
    """Everything a restore reports back to its caller."""

    outcome: Outcome = Outcome.FAILED
    error: Optional[PkgsnapError] = None
    attempts: int = 0
    actions: List[PlannedAction] = field(default_factory=list)
    checked: int = 0
    messages: List[str] = field(default_factory=list)
    states: List[RestoreState] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.outcome is Outcome.FAILED else 0


class RestoreOrchestrator:
    """Restores the package database to the contents of a snapshot."""

    def __init__(
        self,
        database: PackageDatabase,
        resolver: Resolver,
        options: RestoreOptions,
        prompter: Optional[Prompter] = None,
        printer: Optional[SummaryPrinter] = None,
        reconciler: Optional[CacheReconciler] = None,
        lock_manager: Optional[LockManager] = None,
    ):
        self.database = database
        self.resolver = resolver
        self.options = options
        self.prompter = prompter or Prompter()
        self.printer = printer or SummaryPrinter()
        self.reconciler = reconciler
        self.lock_manager = lock_manager or LockManager()

    def _enter(self, result: RestoreResult, state: RestoreState) -> None:
        logger.debug(f"Restore state: {state.value}")
        result.states.append(state)

    def _access(self) -> None:
        if self.options.dry_run:
            self.database.access(AccessMode.READ, DatabaseScope.LOCAL)
        else:
            self.database.access(
                AccessMode.READ | AccessMode.WRITE | AccessMode.CREATE,
                DatabaseScope.LOCAL | DatabaseScope.REPO,
            )

    def run(self, manifest: Path) -> RestoreResult:
        """
        Restore from the snapshot file at *manifest*.

        Errors never escape: they are reported through the result's ``error``
        with ``Outcome.FAILED``.
        """
        result = RestoreResult()
        self._enter(result, RestoreState.INIT)
        lock_mode = LockMode.READONLY if self.options.dry_run else LockMode.EXCLUSIVE

        try:
            # Parse before touching the database so bad input never takes a lock
            snapshot = load_snapshot(manifest)
            logger.info(f"Restoring {len(snapshot)} packages from {manifest}")
            self._access()

            with self.database.session(self.options.repository):
                self._enter(result, RestoreState.DATABASE_OPENED)
                with self.lock_manager.acquire(self.database, lock_mode):
                    self._enter(result, RestoreState.LOCKED)
                    self._resolve_loop(snapshot, result)
        except PkgsnapError as e:
            logger.error(str(e))
            result.outcome = Outcome.FAILED
            result.error = e
            self._enter(result, RestoreState.FAILED)
            return result

        if (
            result.outcome is Outcome.APPLIED
            and not self.options.dry_run
            and self.reconciler is not None
        ):
            self.reconciler.reconcile()
        return result

    def _consent(self, decision: Decision) -> bool:
        if self.options.dry_run:
            return False
        if decision is Decision.SUMMARY_AND_PROMPT:
            return self.prompter.ask("\nProceed with this action?")
        if not self.prompter.assume_yes:
            logger.warning("Quiet restore without --yes: not applying the plan")
        return self.prompter.assume_yes

    def _finish_applied(self, result: RestoreResult, messages: List[str]) -> None:
        result.messages = messages
        if messages:
            self.printer.messages(messages)
        result.outcome = Outcome.APPLIED
        self._enter(result, RestoreState.APPLIED)

    def _resolve_loop(self, snapshot: Snapshot, result: RestoreResult) -> None:
        conflicted_plan: Optional[List[PlannedAction]] = None
        messages: List[str] = []
        flags = JobFlags(
            dry_run=self.options.dry_run, version_test=self.options.version_test
        )

        for attempt in range(1, self.options.max_attempts + 1):
            result.attempts = attempt
            jobs = self.resolver.new_job_set(JobKind.INSTALL, flags)
            jobs.add(MatchMode.GLOB, list(snapshot))
            self._enter(result, RestoreState.REQUEST_BUILT)

            jobs.solve()
            self._enter(result, RestoreState.SOLVED)
            actions = jobs.actions
            result.checked = jobs.total()

            if not actions and conflicted_plan is not None:
                # The conflicted apply already committed what was left to do
                result.actions = conflicted_plan
                self._finish_applied(result, messages)
                return

            result.actions = actions
            if not actions:
                result.outcome = Outcome.NO_CHANGES_NEEDED
                self._enter(result, RestoreState.NO_CHANGES_NEEDED)
                return

            if conflicted_plan is not None and actions == conflicted_plan:
                raise ApplyConflictError(
                    "Conflicts with the existing packages did not resolve: "
                    "the solver proposed the same plan again"
                )

            decision = decide(self.options.quiet, self.options.dry_run, len(actions))
            if decision is not Decision.SILENT:
                self.printer.summary(actions, result.checked)

            if not self._consent(decision):
                result.outcome = Outcome.DECLINED
                self._enter(result, RestoreState.DECLINED)
                return

            self._enter(result, RestoreState.APPLYING)
            status = jobs.apply()

            if status is ApplyStatus.CONFLICT:
                result.outcome = Outcome.CONFLICT_NEEDS_RETRY
                self._enter(result, RestoreState.CONFLICT_RETRY)
                logger.info(
                    "Conflicts with the existing packages have been found. "
                    "One more solver iteration is needed to resolve them."
                )
                conflicted_plan = actions
                messages.extend(jobs.messages)
                continue

            if status is not ApplyStatus.OK:
                raise ApplyFailedError(
                    f"Failed to apply the installation plan: "
                    f"{jobs.error or status.value}"
                )

            messages.extend(jobs.messages)
            self._finish_applied(result, messages)
            return

        raise ApplyConflictError(
            f"Conflicts with the existing packages remain after "
            f"{self.options.max_attempts} solver iterations"
        )
