"""
Confirmation gating for restores.

Decides whether a pending plan is summarised and whether the user is asked
before anything is changed, and provides the console side of both.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from pkgsnap.backend import PlannedAction

logger = logging.getLogger("pkgsnap.gate")


class Decision(Enum):
    """What to show and ask before applying a plan."""

    SILENT = "silent"
    SUMMARY_ONLY = "summary_only"
    SUMMARY_AND_PROMPT = "summary_and_prompt"


def decide(quiet: bool, dry_run: bool, pending: int) -> Decision:
    """
    Gate a plan of *pending* actions.

    Dry runs always show the summary and never prompt; quiet hides the summary
    of a real run.
    """
    if pending <= 0:
        return Decision.SILENT
    if dry_run:
        return Decision.SUMMARY_ONLY
    if quiet:
        return Decision.SILENT
    return Decision.SUMMARY_AND_PROMPT


class Prompter:
    """Asks yes/no questions, answering yes itself when told to assume it."""

    def __init__(
        self,
        assume_yes: bool = False,
        confirm: Optional[Callable[..., bool]] = None,
    ):
        self.assume_yes = assume_yes
        self._confirm = confirm or typer.confirm

    def ask(self, question: str) -> bool:
        if self.assume_yes:
            logger.debug(f"Assuming yes for: {question}")
            return True
        try:
            return bool(self._confirm(question, default=False))
        except typer.Abort:
            return False


class SummaryPrinter:
    """Prints plan summaries and installer messages."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def summary(self, actions: List[PlannedAction], checked: int) -> None:
        self.console.print(
            f"The following {len(actions)} package(s) will be affected "
            f"(of {checked} checked):\n"
        )
        table = Table(show_header=True, header_style="bold")
        table.add_column("Action")
        table.add_column("Package")
        for action in actions:
            table.add_row(action.kind, action.describe())
        self.console.print(table)

    def messages(self, messages: List[str]) -> None:
        for message in messages:
            self.console.print(message, markup=False, highlight=False)
