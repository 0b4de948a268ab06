"""
Command Line Interface

Entry point of media-ledger:

    media-ledger refresh-ledger [--archive-root PATH]
    media-ledger sync [--folder NAME]... [--mode copy|move] [--filter RULE] ...
    media-ledger resolve-and-delete [SOURCE_ROOT]... [--dry-run]
    media-ledger compact-copy-log

Exit codes: 0 success (per-file failures are reported, not fatal),
1 unreadable archive root or bad config, 2 device or rsync unavailable,
3 missing ledger or another run in progress.

Author: media-ledger Project
License: MIT
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .config import Config, TransferMode, load_config
from .core.workflows import (
    SyncPlan,
    WorkflowContext,
    compact_copy_log as compact_copy_log_workflow,
    refresh_ledger as refresh_ledger_workflow,
    resolve_and_delete as resolve_and_delete_workflow,
    sync_device,
)
from .errors import (
    FileUnreadableError,
    PreconditionMissingError,
    TransportUnavailableError,
)
from .utils.logger import get_logger, setup_logging
from .utils.run_lock import run_lock

logger = get_logger(__name__)

EXIT_UNREADABLE = 1
EXIT_TRANSPORT = 2
EXIT_PRECONDITION = 3

app = typer.Typer(
    help="Sync media from a device to staging and delete copies that are provably archived.",
    no_args_is_help=True
)


class SelectionRule(str, Enum):
    """Which device files to consider."""
    ALL = "all"
    SINCE_LAST = "since-last"
    AFTER = "after"
    BEFORE = "before"
    BETWEEN = "between"


RULE_MENU = [
    ("All files", SelectionRule.ALL),
    ("Since last copy/move", SelectionRule.SINCE_LAST),
    ("After a date", SelectionRule.AFTER),
    ("Before a date", SelectionRule.BEFORE),
    ("Between two dates", SelectionRule.BETWEEN),
]


class ConsolePrompter:
    """Prompter backed by typer's confirm and colored echo."""

    STYLES = {
        "info": {},
        "header": {"fg": typer.colors.WHITE, "bold": True},
        "detail": {"fg": typer.colors.BRIGHT_BLACK},
        "success": {"fg": typer.colors.GREEN},
        "warning": {"fg": typer.colors.YELLOW},
        "error": {"fg": typer.colors.RED},
    }

    def confirm(self, question: str, default: bool = False) -> bool:
        return typer.confirm(typer.style(question, fg=typer.colors.YELLOW), default=default)

    def echo(self, message: str, style: str = "info") -> None:
        typer.secho(message, err=(style == "error"), **self.STYLES.get(style, {}))


def _fail(message: str, code: int):
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code)


def _config(ctx: typer.Context) -> Config:
    return ctx.obj


def _workflow_context(ctx: typer.Context, yes: bool) -> WorkflowContext:
    return WorkflowContext(_config(ctx), ConsolePrompter(), assume_yes=yes)


def _lock(config: Config):
    return run_lock(config.state.resolve(config.state.lock_file), timeout=config.state.lock_timeout)


def _check_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a YYYY-MM-DD date")
    return value


def _version_callback(value: bool):
    if value:
        typer.echo(f"media-ledger {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (default: $CONFIG_PATH or ~/.config/media-ledger/config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to the console at DEBUG level"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Load configuration and set up logging for every command."""
    try:
        config = load_config(str(config_path) if config_path else None)
    except ValueError as e:
        _fail(f"Invalid configuration: {e}", EXIT_UNREADABLE)

    log_file = config.app.log_file_path or str(
        config.state.resolve(config.state.logs_dir) / "media_ledger.log"
    )
    setup_logging(
        log_level="DEBUG" if verbose else config.app.log_level,
        log_to_file=config.app.log_to_file,
        log_file_path=log_file,
        log_rotation_size=config.app.log_rotation_size,
        log_retention_count=config.app.log_retention_count,
        json_format=config.app.json_format,
        console=verbose
    )
    ctx.obj = config


@app.command("refresh-ledger")
def refresh_ledger(
    ctx: typer.Context,
    archive_root: Optional[Path] = typer.Option(None, "--archive-root", help="Override the configured archive root"),
) -> None:
    """Rebuild the provenance ledger from the archive root."""
    context = _workflow_context(ctx, yes=True)
    try:
        with _lock(context.config):
            refresh_ledger_workflow(context, str(archive_root) if archive_root else None)
    except FileUnreadableError as e:
        _fail(f"Archive root unreadable: {e}", EXIT_UNREADABLE)
    except PreconditionMissingError as e:
        _fail(str(e), EXIT_PRECONDITION)


def _choose_folders(context: WorkflowContext) -> List[str]:
    folders = context.device.list_subfolders(context.config.device.exclude_folders)
    if not folders:
        _fail(f"No subfolders found in {context.device.remote_dir}", EXIT_TRANSPORT)

    typer.secho("Available subfolders on device:", bold=True)
    for number, name in enumerate(folders, start=1):
        typer.echo(f"  {number}) {name}")
    typer.echo(f"  {len(folders) + 1}) All")

    while True:
        choice = typer.prompt("Select a folder", type=int, default=len(folders) + 1)
        if choice == len(folders) + 1:
            return folders
        if 1 <= choice <= len(folders):
            return [folders[choice - 1]]
        typer.secho("Please select a valid option.", fg=typer.colors.YELLOW)


def _choose_rule() -> SelectionRule:
    typer.secho("File selection options:", bold=True)
    for number, (label, _) in enumerate(RULE_MENU, start=1):
        suffix = " (default)" if number == 2 else ""
        typer.echo(f"  {number}) {label}{suffix}")
    choice = typer.prompt("Choose file selection", type=int, default=2)
    if not 1 <= choice <= len(RULE_MENU):
        return SelectionRule.SINCE_LAST
    return RULE_MENU[choice - 1][1]


@app.command()
def sync(
    ctx: typer.Context,
    folder: Optional[List[str]] = typer.Option(None, "--folder", "-f", help="Device subfolder (repeatable)"),
    mode: Optional[TransferMode] = typer.Option(None, "--mode", "-m", help="copy keeps device files, move removes them"),
    rule: Optional[SelectionRule] = typer.Option(None, "--filter", help="Which files to consider"),
    start: Optional[str] = typer.Option(None, "--start", help="Start date YYYY-MM-DD"),
    end: Optional[str] = typer.Option(None, "--end", help="End date YYYY-MM-DD"),
    delete_remote: Optional[bool] = typer.Option(
        None, "--delete-remote/--keep-remote", help="Delete device files that are confirmed staged"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask; omitted options take their defaults"),
) -> None:
    """Fetch new files from the device into the staging folder."""
    start = _check_date(start)
    end = _check_date(end)
    context = _workflow_context(ctx, yes=yes)

    try:
        with _lock(context.config):
            context.device.check_connection()

            folders = list(folder) if folder else ([] if yes else _choose_folders(context))
            if mode is None:
                mode = TransferMode.COPY
                if not yes and typer.prompt("Copy or move? [c/m]", default="c").lower().startswith("m"):
                    mode = TransferMode.MOVE
            if rule is None:
                rule = SelectionRule.SINCE_LAST if yes else _choose_rule()
            if rule in (SelectionRule.AFTER, SelectionRule.BETWEEN) and start is None:
                start = _check_date(typer.prompt("Enter start date (format: YYYY-MM-DD)"))
            if rule in (SelectionRule.BEFORE, SelectionRule.BETWEEN) and end is None:
                end = _check_date(typer.prompt("Enter end date (format: YYYY-MM-DD)"))
            if delete_remote is None:
                delete_remote = False if yes else typer.confirm(
                    "Delete files on device that have been staged?", default=False
                )

            plan = SyncPlan(
                folders=folders or None,
                mode=TransferMode(mode).value,
                filter_mode=SelectionRule(rule).value.replace("-", "_"),
                start=start,
                end=end,
                delete_remote=delete_remote
            )
            sync_device(context, plan)
    except TransportUnavailableError as e:
        _fail(f"Device unavailable: {e}", EXIT_TRANSPORT)
    except PreconditionMissingError as e:
        _fail(str(e), EXIT_PRECONDITION)


@app.command("resolve-and-delete")
def resolve_and_delete(
    ctx: typer.Context,
    source_roots: Optional[List[Path]] = typer.Argument(None, help="Folders to clean (default: configured source folders)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted without deleting"),
    refresh: bool = typer.Option(True, "--refresh/--no-refresh", help="Rebuild the ledger first"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without asking"),
) -> None:
    """Delete files whose exact content is already in the archive."""
    context = _workflow_context(ctx, yes=yes)
    roots = [str(root) for root in source_roots or []]
    try:
        with _lock(context.config):
            resolve_and_delete_workflow(context, roots, dry_run=dry_run, refresh=refresh)
    except PreconditionMissingError as e:
        _fail(str(e), EXIT_PRECONDITION)
    except FileUnreadableError as e:
        _fail(f"Archive root unreadable: {e}", EXIT_UNREADABLE)


@app.command("compact-copy-log")
def compact_copy_log(ctx: typer.Context) -> None:
    """Rewrite the copy/move log without duplicate records."""
    context = _workflow_context(ctx, yes=True)
    try:
        with _lock(context.config):
            compact_copy_log_workflow(context)
    except PreconditionMissingError as e:
        _fail(str(e), EXIT_PRECONDITION)


if __name__ == "__main__":
    app()
