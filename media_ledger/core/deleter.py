"""
Deletion Executor

Removes a confirmed batch of files one by one. Each deletion is independent:
a failure is logged and counted, and the batch keeps going.

Author: media-ledger Project
License: MIT
"""

import os
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional

from ..errors import FileUnreadableError
from ..provenance.digest_store import FileIdentityKey
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DeletionStatus(Enum):
    """Outcome of a single deletion."""
    DELETED = "deleted"
    DRYRUN = "dryrun"
    FAILED = "failed"


class DeletionOutcome:
    """Result of deleting one file."""

    def __init__(
        self,
        path: str,
        status: DeletionStatus,
        error: Optional[str] = None
    ):
        """
        Initialize deletion outcome.

        Args:
            path: File that was (or would have been) deleted
            status: Deletion status
            error: Error message if failed
        """
        self.path = path
        self.status = status
        self.error = error
        self.timestamp = datetime.now()

    @property
    def success(self) -> bool:
        return self.status != DeletionStatus.FAILED

    def __repr__(self) -> str:
        return f"DeletionOutcome(path={self.path}, status={self.status.value})"


class DeletionReport:
    """Outcomes of one confirmed batch."""

    def __init__(self, outcomes: Optional[List[DeletionOutcome]] = None, dry_run: bool = False):
        self.outcomes: List[DeletionOutcome] = outcomes or []
        self.dry_run = dry_run

    @property
    def deleted(self) -> int:
        return sum(1 for o in self.outcomes if o.status == DeletionStatus.DELETED)

    @property
    def would_delete(self) -> int:
        return sum(1 for o in self.outcomes if o.status == DeletionStatus.DRYRUN)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == DeletionStatus.FAILED)

    def __repr__(self) -> str:
        return f"DeletionReport(deleted={self.deleted}, failed={self.failed}, dry_run={self.dry_run})"


class Deleter:
    """Sequential, fail-soft file deletion."""

    def delete(
        self,
        paths: Iterable[str],
        dry_run: bool = False,
        expected: Optional[Mapping[str, FileIdentityKey]] = None
    ) -> DeletionReport:
        """
        Delete every path in order.

        A path listed in ``expected`` is only removed while its mtime and size
        still match; a file modified since it was hashed fails instead.

        Args:
            paths: Files to delete
            dry_run: Only report what would be deleted
            expected: Identity of each file when its digest was taken

        Returns:
            DeletionReport with one outcome per path
        """
        report = DeletionReport(dry_run=dry_run)

        for path in paths:
            if dry_run:
                logger.info(f"[dry-run] Would delete {path}")
                report.outcomes.append(DeletionOutcome(path, DeletionStatus.DRYRUN))
                continue

            change = self._changed_since_scan(path, expected)
            if change:
                logger.warning(f"Not deleting {path}: {change}")
                report.outcomes.append(DeletionOutcome(path, DeletionStatus.FAILED, error=change))
                continue

            try:
                os.remove(path)
            except OSError as e:
                logger.error(f"Failed to delete {path}: {e}")
                report.outcomes.append(
                    DeletionOutcome(path, DeletionStatus.FAILED, error=e.strerror or str(e))
                )
                continue

            logger.info(f"Deleted {path}")
            report.outcomes.append(DeletionOutcome(path, DeletionStatus.DELETED))

        logger.info(
            f"Deletion batch finished: {report.deleted} deleted, "
            f"{report.would_delete} dry-run, {report.failed} failed"
        )
        return report

    def _changed_since_scan(self, path: str, expected: Optional[Mapping[str, FileIdentityKey]]) -> Optional[str]:
        if not expected or path not in expected:
            return None
        scanned = expected[path]
        try:
            current = FileIdentityKey.from_path(path, follow_symlinks=True)
        except FileUnreadableError as e:
            return e.reason
        if (current.mtime, current.size) != (scanned.mtime, scanned.size):
            return "modified since it was scanned"
        return None
