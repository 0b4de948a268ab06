"""
Workflows

The three user-facing pipelines, each a plain function over an explicit
WorkflowContext:

- refresh_ledger: rebuild the provenance ledger from the archive root
- sync_device: fetch new device files into staging, optionally delete the
  device copies that are confirmed staged
- resolve_and_delete: delete source files whose content is archived

Prompting goes through the context's Prompter so the same code runs from
the CLI and from tests.

Author: media-ledger Project
License: MIT
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from ..config.schema import Config
from ..errors import (
    FileUnreadableError,
    PreconditionMissingError,
    TransportUnavailableError,
    UserDeclinedError,
)
from ..provenance.copy_tracker import CopyMoveTracker
from ..provenance.digest_store import ContentDigestStore
from ..provenance.ledger import LedgerSnapshot, ProvenanceLedger
from ..provenance.resolver import Resolution, SafeDeleteResolver, ensure_outside_archive
from ..provenance.scanner import PopulationScanner, build_scanner, digest_cache_path
from ..transfer.mirror import RsyncMirror
from ..transfer.remote_device import DateFilter, RemoteDevice, RemoteFile
from ..utils.file_ops import TIMESTAMP_FORMAT, format_timestamp
from ..utils.logger import get_logger
from .deleter import Deleter, DeletionReport, DeletionStatus
from .run_log import RunSummaryLog, SyncWatermarks, TransferLog

logger = get_logger(__name__)

DEVICE_COPIED_CACHE = "device_copied_hashes.txt"


class Prompter(Protocol):
    """Console interaction used by the workflows."""

    def confirm(self, question: str, default: bool = False) -> bool:
        ...

    def echo(self, message: str, style: str = "info") -> None:
        ...


class WorkflowContext:
    """
    Everything a workflow touches, built lazily from the config.

    Collaborators (device, mirror, deleter) can be injected, which is how
    the tests replace SSH and rsync.
    """

    def __init__(
        self,
        config: Config,
        prompter: Prompter,
        assume_yes: bool = False,
        device: Optional[RemoteDevice] = None,
        mirror: Optional[RsyncMirror] = None,
        deleter: Optional[Deleter] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize context.

        Args:
            config: Loaded configuration
            prompter: Console interaction
            assume_yes: Answer every confirmation with yes
            device: Remote device client (built from config when omitted)
            mirror: Bulk transfer (built from config when omitted)
            deleter: Deletion executor
            clock: Source of 'now'
        """
        self.config = config
        self.prompter = prompter
        self.assume_yes = assume_yes
        self.deleter = deleter or Deleter()
        self.clock = clock
        self._device = device
        self._mirror = mirror
        self._stores: Dict[str, ContentDigestStore] = {}
        self._copy_tracker: Optional[CopyMoveTracker] = None
        self._ledger: Optional[ProvenanceLedger] = None
        self._watermarks: Optional[SyncWatermarks] = None

    @property
    def device(self) -> RemoteDevice:
        if self._device is None:
            self._device = RemoteDevice.from_config(self.config.device)
        return self._device

    @property
    def mirror(self) -> RsyncMirror:
        if self._mirror is None:
            self._mirror = RsyncMirror.from_config(self.config.device, self.config.staging)
        return self._mirror

    def state_path(self, value: str) -> Path:
        return self.config.state.resolve(value)

    def digest_store(self, root: str) -> ContentDigestStore:
        """Digest cache of the population rooted at root (one per root)."""
        key = os.path.abspath(os.path.expanduser(root))
        if key not in self._stores:
            hashing = self.config.hashing
            self._stores[key] = ContentDigestStore(
                str(digest_cache_path(self.state_path(self.config.state.digest_cache_dir), key)),
                algorithm=hashing.algorithm,
                chunk_size=hashing.chunk_size
            )
        return self._stores[key]

    def scanner(self, root: str) -> PopulationScanner:
        return build_scanner(self.digest_store(root), self.config.hashing)

    @property
    def copy_tracker(self) -> CopyMoveTracker:
        if self._copy_tracker is None:
            hashing = self.config.hashing
            store = ContentDigestStore(
                str(self.state_path(self.config.state.digest_cache_dir) / DEVICE_COPIED_CACHE),
                algorithm=hashing.algorithm,
                chunk_size=hashing.chunk_size
            )
            self._copy_tracker = CopyMoveTracker(
                str(self.state_path(self.config.state.copy_log_file)),
                staging_roots=[self.config.staging.local_dir],
                digest_store=store
            )
        return self._copy_tracker

    @property
    def ledger(self) -> ProvenanceLedger:
        if self._ledger is None:
            self._ledger = ProvenanceLedger(
                str(self.state_path(self.config.state.ledger_file)),
                self.scanner(self.config.archive.root),
                self.copy_tracker
            )
        return self._ledger

    def ledger_for(self, archive_root: str) -> ProvenanceLedger:
        """Ledger rebuilt from an archive root other than the configured one."""
        self._ledger = ProvenanceLedger(
            str(self.state_path(self.config.state.ledger_file)),
            self.scanner(archive_root),
            self.copy_tracker
        )
        return self._ledger

    @property
    def watermarks(self) -> SyncWatermarks:
        if self._watermarks is None:
            self._watermarks = SyncWatermarks(str(self.state_path(self.config.state.watermark_file)))
        return self._watermarks

    @property
    def logs_dir(self) -> Path:
        return self.state_path(self.config.state.logs_dir)

    def summary_log(self, name: str) -> RunSummaryLog:
        return RunSummaryLog(str(self.logs_dir), name, year=self.clock().year)

    def transfer_log(self) -> TransferLog:
        return TransferLog(str(self.logs_dir), year=self.clock().year)

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            self.prompter.echo(f"{question} yes (--yes)", style="detail")
            return True
        return self.prompter.confirm(question, default=False)

    def require(self, question: str):
        """
        Ask for confirmation of one step.

        Raises:
            UserDeclinedError: If the answer is no
        """
        if not self.confirm(question):
            raise UserDeclinedError(question)

    def echo(self, message: str, style: str = "info"):
        self.prompter.echo(message, style=style)


# ---------------------------------------------------------------------------
# refresh-ledger
# ---------------------------------------------------------------------------

def refresh_ledger(context: WorkflowContext, archive_root: Optional[str] = None) -> LedgerSnapshot:
    """
    Rebuild the provenance ledger.

    Args:
        context: Workflow context
        archive_root: Overrides the configured archive root

    Returns:
        The new LedgerSnapshot

    Raises:
        FileUnreadableError: If the archive root cannot be read
    """
    root = archive_root or context.config.archive.root
    ledger = context.ledger_for(archive_root) if archive_root else context.ledger

    context.echo(f"Updating provenance ledger from {root}...")
    snapshot = ledger.rebuild(root)
    report = ledger.last_report

    context.echo(
        f"Ledger now holds {len(snapshot)} files "
        f"({report.carried} unchanged, {report.added} new, {report.dropped} removed)",
        style="success"
    )
    for path, reason in report.failures or []:
        context.echo(f"  Unreadable: {path} ({reason})", style="warning")
    return snapshot


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------

@dataclass
class SyncPlan:
    """What to fetch from the device."""
    folders: Optional[List[str]] = None
    mode: str = "copy"
    filter_mode: str = "since_last"
    start: Optional[str] = None
    end: Optional[str] = None
    delete_remote: bool = False


@dataclass
class FolderSyncResult:
    """Outcome of syncing one device folder."""
    folder: str
    listed: int = 0
    pending: int = 0
    transferred: List[str] = field(default_factory=list)
    remote_deleted: int = 0
    remote_delete_failed: int = 0
    skipped: bool = False
    error: Optional[str] = None


def build_date_filter(context: WorkflowContext, remote_folder: str, plan: SyncPlan) -> DateFilter:
    """Date filter for one folder; 'since_last' starts at the folder's watermark."""
    start = plan.start
    if plan.filter_mode == "since_last":
        mark = context.watermarks.get(remote_folder)
        start = mark.strftime(TIMESTAMP_FORMAT) if mark else None
    return DateFilter(
        mode=plan.filter_mode,
        start=start,
        end=plan.end,
        exclude_before=context.config.device.exclude_before_date
    )


def sync_device(context: WorkflowContext, plan: SyncPlan) -> List[FolderSyncResult]:
    """
    Fetch new device files into staging, folder by folder.

    Args:
        context: Workflow context
        plan: Folders, mode, date filter and remote deletion choice

    Returns:
        One FolderSyncResult per folder

    Raises:
        TransportUnavailableError: If the device or rsync is unavailable
    """
    device = context.device
    device.check_connection()

    folders = plan.folders or device.list_subfolders(context.config.device.exclude_folders)
    if not folders:
        context.echo(f"No subfolders found in {device.remote_dir}", style="warning")
        return []

    summary = context.summary_log("sync")
    transfer_log = context.transfer_log()
    results = []
    try:
        for folder in folders:
            results.append(_sync_folder(context, plan, folder, summary, transfer_log))
    finally:
        device.close()

    transferred = sum(len(r.transferred) for r in results)
    context.echo(
        f"Sync finished: {transferred} files transferred across {len(results)} folders",
        style="success"
    )
    return results


def _date_range(files: Sequence[RemoteFile]):
    if not files:
        return "-", "-"
    mtimes = [f.mtime for f in files]
    return format_timestamp(min(mtimes)), format_timestamp(max(mtimes))


def _staged_on_device(
    context: WorkflowContext,
    files: Sequence[RemoteFile],
    local_folder: Path,
    remote_folder: str
) -> List[RemoteFile]:
    """Device files with a tracker record for the same path and mtime whose local copy still exists."""
    tracker = context.copy_tracker
    remote_dir = context.device.remote_dir
    staged = []
    for f in files:
        if not tracker.was_copied(f.relative_to(remote_dir), f.mtime):
            continue
        if (local_folder / f.relative_to(remote_folder)).is_file():
            staged.append(f)
    return staged


def _record_transferred(
    context: WorkflowContext,
    plan: SyncPlan,
    transferred: Sequence[str],
    remote_folder: str,
    local_folder: Path,
    result: FolderSyncResult,
    transfer_log: TransferLog
):
    """Log, track and hash the files rsync reported as transferred."""
    tracker = context.copy_tracker
    for rel in transferred:
        transfer_log.append(plan.mode, f"{remote_folder}/{rel}", str(local_folder / rel), "success")
    result.transferred = list(transferred)

    tracker.record_population(str(local_folder))
    tracker.hash_staged(str(local_folder / rel) for rel in transferred)


def _sync_folder(
    context: WorkflowContext,
    plan: SyncPlan,
    folder: str,
    summary: RunSummaryLog,
    transfer_log: TransferLog
) -> FolderSyncResult:
    device = context.device
    tracker = context.copy_tracker
    result = FolderSyncResult(folder=folder)

    remote_folder = device.folder_path(folder)
    local_folder = Path(context.config.staging.local_dir) / folder
    date_filter = build_date_filter(context, remote_folder, plan)

    listed_at = context.clock()
    files = device.list_files(folder, date_filter)
    pending = [f for f in files if not tracker.was_copied(f.relative_to(device.remote_dir), f.mtime)]
    result.listed = len(files)
    result.pending = len(pending)
    oldest, newest = _date_range(pending)

    lines = [
        f"Selection rule: {date_filter.describe()}",
        f"Action: {plan.mode} from {remote_folder} to {local_folder}",
        f"Number of files: {len(pending)}",
        f"Oldest file: {oldest}",
        f"Newest file: {newest}",
    ]
    summary.begin(f"Processing subfolder: {folder}")
    context.echo(f"Processing subfolder: {folder}", style="header")
    for line in lines:
        summary.note(line)
        context.echo(f"  {line}", style="detail")

    if plan.delete_remote:
        already = _staged_on_device(context, files, local_folder, remote_folder)
        summary.note(f"Files already staged on device: {len(already)}")
        context.echo(f"  Files already staged on device: {len(already)}", style="detail")

    if pending:
        try:
            context.require(f"Proceed with {plan.mode} of {len(pending)} files for {folder}?")
        except UserDeclinedError:
            # Remote deletion is skipped along with the transfer
            summary.note("Skipped by user.")
            context.echo("  Skipped by user.", style="warning")
            result.skipped = True
            return result

        try:
            transfer = context.mirror.mirror(
                remote_folder,
                str(local_folder),
                plan.mode,
                [f.relative_to(remote_folder) for f in pending]
            )
        except TransportUnavailableError as e:
            if e.transferred:
                _record_transferred(context, plan, e.transferred, remote_folder, local_folder, result, transfer_log)
                summary.note(f"Transferred before failure: {len(e.transferred)} files.")
                context.echo(f"  Transferred before failure: {len(e.transferred)} files.", style="warning")
            summary.note(f"Transfer failed: {e}")
            raise

        _record_transferred(context, plan, transfer.transferred, remote_folder, local_folder, result, transfer_log)

        if transfer.success:
            context.watermarks.update(remote_folder, listed_at)
            summary.note(f"Sync complete for {folder}: {len(transfer.transferred)} files.")
            context.echo(f"  Sync complete for {folder}: {len(transfer.transferred)} files.", style="success")
        else:
            result.error = transfer.error
            summary.note(f"Sync incomplete for {folder}: {transfer.error}")
            context.echo(f"  Sync incomplete for {folder}: {transfer.error}", style="warning")
    else:
        summary.note(f"No files to copy or move for {folder}. Nothing to do.")
        context.echo(f"  No files to copy or move for {folder}. Nothing to do.", style="warning")
        context.watermarks.update(remote_folder, listed_at)

    if plan.delete_remote:
        try:
            _delete_staged_from_device(context, plan, files, result, local_folder, remote_folder, summary, transfer_log)
        except UserDeclinedError:
            summary.note(f"Deletion cancelled for {folder}.")
            context.echo(f"  Deletion cancelled for {folder}.", style="warning")

    return result


def _delete_staged_from_device(
    context: WorkflowContext,
    plan: SyncPlan,
    files: Sequence[RemoteFile],
    result: FolderSyncResult,
    local_folder: Path,
    remote_folder: str,
    summary: RunSummaryLog,
    transfer_log: TransferLog
):
    candidates = _staged_on_device(context, files, local_folder, remote_folder)
    if plan.mode == "move":
        # rsync already removed these
        moved = set(result.transferred)
        candidates = [f for f in candidates if f.relative_to(remote_folder) not in moved]

    if not candidates:
        summary.note("No staged files to delete from device.")
        return

    context.require(f"About to delete {len(candidates)} files from device in {result.folder}. Continue?")

    for f in candidates:
        if context.device.delete_file(f.path):
            result.remote_deleted += 1
            transfer_log.append("deleted", f.path, "", "success")
        else:
            result.remote_delete_failed += 1
            transfer_log.append("deleted", f.path, "", "fail")

    message = f"Deleted {result.remote_deleted} files from device in {result.folder}"
    if result.remote_delete_failed:
        message += f" ({result.remote_delete_failed} failed)"
    summary.note(message + ".")
    context.echo(f"  {message}.", style="success" if not result.remote_delete_failed else "warning")


# ---------------------------------------------------------------------------
# resolve-and-delete
# ---------------------------------------------------------------------------

@dataclass
class SourceDeletionResult:
    """Outcome for one source root."""
    source_root: str
    resolution: Optional[Resolution] = None
    report: Optional[DeletionReport] = None
    declined: bool = False
    error: Optional[str] = None


def resolve_and_delete(
    context: WorkflowContext,
    source_roots: Sequence[str] = (),
    dry_run: bool = False,
    refresh: bool = True
) -> List[SourceDeletionResult]:
    """
    Delete source files whose exact content is already in the archive.

    Args:
        context: Workflow context
        source_roots: Folders to clean (configured source folders by default)
        dry_run: Report what would be deleted without deleting
        refresh: Rebuild the ledger first; otherwise load the persisted one

    Returns:
        One SourceDeletionResult per source root

    Raises:
        PreconditionMissingError: If the ledger is missing or empty, no
            source folders are given, or a source folder overlaps the archive
        FileUnreadableError: If refresh is set and the archive root is unreadable
    """
    roots = list(source_roots) or list(context.config.deletion.source_folders)
    if not roots:
        raise PreconditionMissingError("No source folders given or configured")

    archive_root = context.config.archive.root
    for root in roots:
        ensure_outside_archive(root, archive_root)

    snapshot = refresh_ledger(context) if refresh else context.ledger.load()
    resolver = SafeDeleteResolver(snapshot, context.scanner, archive_root=archive_root)
    summary = context.summary_log("delete_copied")

    results = []
    for root in roots:
        results.append(_resolve_one(context, resolver, root, dry_run, summary))

    reports = [r.report for r in results if r.report is not None]
    failed = sum(report.failed for report in reports)
    if dry_run:
        done = f"{sum(report.would_delete for report in reports)} files would be deleted"
    else:
        done = f"{sum(report.deleted for report in reports)} files deleted"
    context.echo(
        f"Done: {done}, {failed} failed, across {len(results)} source folders",
        style="success" if not failed else "warning"
    )
    return results


def _resolve_one(
    context: WorkflowContext,
    resolver: SafeDeleteResolver,
    root: str,
    dry_run: bool,
    summary: RunSummaryLog
) -> SourceDeletionResult:
    result = SourceDeletionResult(source_root=root)
    summary.begin(f"resolve-and-delete run for {root}" + (" (dry run)" if dry_run else ""))

    context.echo(f"Scanning {root} for files...", style="header")
    try:
        resolution = resolver.resolve(root)
    except FileUnreadableError as e:
        result.error = str(e)
        summary.note(f"Source folder unreadable: {e.reason}")
        context.echo(f"  Cannot read {root}: {e.reason}", style="error")
        return result
    result.resolution = resolution

    lines = [
        f"Total files in {root}: {resolution.total}",
        f"Files already archived (to be deleted): {len(resolution.to_delete)}",
        f"Files to keep: {len(resolution.to_keep)}",
    ]
    if resolution.failures:
        lines.append(f"Unreadable files (kept): {len(resolution.failures)}")
    for line in lines:
        summary.note(line)
        context.echo(f"  {line}", style="detail")
    for path, reason in resolution.failures:
        summary.outcome("unreadable", path, "fail")
        logger.warning(f"Kept unreadable file {path}: {reason}")

    if not resolution.to_delete:
        context.echo(f"No files to delete in {root}.", style="success")
        return result

    to_delete = resolution.sorted_deletions()
    limit = context.config.deletion.preview_limit
    context.echo(f"Files to be deleted from {root}:")
    for path in to_delete[:limit]:
        context.echo(f"  {path}", style="detail")
    if len(to_delete) > limit:
        context.echo(f"  ...and {len(to_delete) - limit} more", style="detail")

    question = f"Proceed to delete these {len(to_delete)} files from {root}?"
    if dry_run:
        question = f"Simulate deleting these {len(to_delete)} files from {root}?"
    try:
        context.require(question)
    except UserDeclinedError:
        result.declined = True
        summary.note("User confirmation: no")
        summary.note(f"Deletion cancelled by user for {root}.")
        context.echo(f"Deletion cancelled for {root}.", style="warning")
        return result
    summary.note("User confirmation: yes")

    report = context.deleter.delete(to_delete, dry_run=dry_run, expected=resolution.identities)
    result.report = report

    store = context.digest_store(root)
    for outcome in report.outcomes:
        if outcome.status == DeletionStatus.DRYRUN:
            summary.outcome("dryrun", outcome.path, "success")
            context.echo(f"  Would delete: {outcome.path}", style="detail")
        elif outcome.status == DeletionStatus.DELETED:
            summary.outcome("deleted", outcome.path, "success")
            store.forget(outcome.path)
        else:
            summary.outcome("delete_failed", outcome.path, "fail")
            context.echo(f"  Failed to delete {outcome.path}: {outcome.error}", style="error")
    store.save()

    if dry_run:
        message = f"Dry run complete. {report.would_delete} files would be deleted from {root}."
    else:
        message = f"Deletion complete. {report.deleted} files deleted from {root}, {report.failed} failed."
    summary.note(message)
    context.echo(message, style="success" if not report.failed else "warning")
    return result


def compact_copy_log(context: WorkflowContext) -> int:
    """Rewrite the copy/move log without duplicate records."""
    dropped = context.copy_tracker.compact()
    context.echo(f"Copy log compacted: {dropped} duplicate records removed", style="success")
    return dropped
