"""
Command-line interface for pkgsnap.

This module provides the command-line entry point for dumping the installed
packages to a snapshot and restoring a host from one.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler

from pkgsnap import __version__
from pkgsnap.backend import PackageDatabase, Resolver
from pkgsnap.backend.pkgng import PkgngDatabase, PkgngResolver
from pkgsnap.cache import CacheReconciler
from pkgsnap.config import PkgsnapConfig
from pkgsnap.dump import dump_installed
from pkgsnap.errors import PkgsnapError
from pkgsnap.gate import Prompter, SummaryPrinter
from pkgsnap.restore import Outcome, RestoreOptions, RestoreOrchestrator, RestoreResult

# Set up the consoles and logger; logs go to stderr so a dump to stdout stays clean
console = Console()
err_console = Console(stderr=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
)
logger = logging.getLogger("pkgsnap")

# Create the Typer app
app = typer.Typer(
    help="Snapshot installed packages and restore a host to the snapshot.",
    add_completion=False,
)


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.error(message)
    err_console.print(f"[red]{message}[/red]")
    return None


def get_config(ctx: typer.Context) -> PkgsnapConfig:
    """Return the configuration loaded by the callback, loading it if needed."""
    if isinstance(ctx.obj, PkgsnapConfig):
        return ctx.obj
    return PkgsnapConfig.load().with_env()


def build_backend(config: PkgsnapConfig) -> Tuple[PackageDatabase, Resolver]:
    """Create the package database and resolver described by *config*."""
    database = PkgngDatabase(
        db_dir=config.db_dir,
        cache_dir=config.cache_dir,
        binary_path=config.pkg_binary,
    )
    return database, PkgngResolver(database)


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json: bool = typer.Option(False, "--json", help="Output logs in JSON format."),
    version: bool = typer.Option(
        False, "--version", help="Show the application version and exit."
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to the configuration file (default: ~/.config/pkgsnap/config.yaml).",
    ),
) -> None:
    """
    pkgsnap: dump what is installed, replay it anywhere.
    """
    if version:
        console.print(f"pkgsnap version: {__version__}")
        raise typer.Exit()

    # Configure logging level based on verbosity
    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    # Configure JSON logging if requested
    if json:
        # Reconfigure logging for JSON output
        for handler in logging.root.handlers[:]:
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )
        logger.debug("JSON logging enabled")

    config_path = Path(config).expanduser() if config else None
    ctx.obj = PkgsnapConfig.load(config_path).with_env()


@app.command()
def dump(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-f",
        help="File to write the snapshot to (default: standard output).",
    ),
) -> None:
    """
    Write the list of installed packages to a snapshot.
    """
    config = get_config(ctx)
    database, _ = build_backend(config)
    output_path = Path(output).expanduser() if output else None

    try:
        dump_installed(database, output_path)
    except PkgsnapError as e:
        log_error(str(e))
        raise typer.Exit(1) from None


def report_outcome(result: RestoreResult, manifest: Path, dry_run: bool) -> None:
    """Tell the user how the restore ended."""
    if result.outcome is Outcome.NO_CHANGES_NEEDED:
        console.print("The most recent versions of packages are already installed")
    elif result.outcome is Outcome.APPLIED:
        console.print(
            f"[green]Restored {len(result.actions)} package(s) from {manifest}[/green]"
        )
    elif result.outcome is Outcome.DECLINED:
        if dry_run:
            console.print("Dry run: no changes were made.")
        else:
            console.print("Restore declined; no changes were made.")
    else:
        kind = result.error.kind.value if result.error else "unknown"
        log_error(f"Restore failed ({kind}): {result.error}")


@app.command()
def restore(
    ctx: typer.Context,
    output: str = typer.Option(
        ..., "--output", "-f", help="Snapshot file to restore from."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Show what would change without changing it."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Do not print the summary of pending changes."
    ),
    repository: Optional[str] = typer.Option(
        None,
        "--repository",
        "-r",
        help="Only resolve against the named repository.",
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Assume yes when asked for confirmation."
    ),
) -> None:
    """
    Install the packages listed in a snapshot.
    """
    config = get_config(ctx)
    manifest = Path(output).expanduser()
    options = RestoreOptions(
        dry_run=dry_run,
        quiet=quiet,
        repository=repository or config.repository,
        max_attempts=config.max_attempts,
    )

    database, resolver = build_backend(config)
    orchestrator = RestoreOrchestrator(
        database,
        resolver,
        options,
        prompter=Prompter(assume_yes=yes or config.assume_yes),
        printer=SummaryPrinter(console),
        reconciler=CacheReconciler(config.cache_dir, enabled=config.autoclean),
    )

    result = orchestrator.run(manifest)
    report_outcome(result, manifest, dry_run)
    if result.exit_code:
        raise typer.Exit(result.exit_code)


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"pkgsnap version: {__version__}")


if __name__ == "__main__":
    app()
