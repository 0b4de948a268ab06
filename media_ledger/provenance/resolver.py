"""
Safe-Delete Resolver

Decides which files of a source population are provably archived: a file is
deletable iff its content digest is present in the current ledger snapshot.
Names and paths never authorize a deletion.

Author: media-ledger Project
License: MIT
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ..errors import PreconditionMissingError
from ..utils.logger import get_logger
from .digest_store import FileIdentityKey
from .ledger import LedgerSnapshot
from .scanner import PopulationScanner, SourceInventoryEntry

logger = get_logger(__name__)


@dataclass
class Resolution:
    """Partition of one source population."""
    source_root: str
    to_delete: Set[str] = field(default_factory=set)
    to_keep: Set[str] = field(default_factory=set)
    failures: List[Tuple[str, str]] = field(default_factory=list)
    # Identity of each deletion candidate as seen by the scan
    identities: Dict[str, FileIdentityKey] = field(default_factory=dict)

    @property
    def total(self) -> int:
        """Number of files that were hashed and partitioned."""
        return len(self.to_delete) + len(self.to_keep)

    def sorted_deletions(self) -> List[str]:
        return sorted(self.to_delete)


def partition(
    inventory: Iterable[SourceInventoryEntry],
    archived_digests: FrozenSet[str],
    source_root: str = ""
) -> Resolution:
    """
    Split an inventory by membership of each digest in archived_digests.

    Duplicate source files are marked independently.

    Args:
        inventory: Scanned source files
        archived_digests: Digests currently present in the archive
        source_root: Label for the resolution

    Returns:
        Resolution (failures left empty)
    """
    resolution = Resolution(source_root=source_root)
    for entry in inventory:
        if entry.digest in archived_digests:
            resolution.to_delete.add(entry.path)
        else:
            resolution.to_keep.add(entry.path)
    return resolution


def ensure_outside_archive(source_root: str, archive_root: str) -> None:
    """
    Refuse a source folder that is, contains, or lies inside the archive.

    Every archived file would otherwise match its own ledger entry and be
    deleted.

    Raises:
        PreconditionMissingError: If the two folders overlap
    """
    source = os.path.realpath(os.path.expanduser(str(source_root)))
    archive = os.path.realpath(os.path.expanduser(str(archive_root)))
    try:
        common = os.path.commonpath([source, archive])
    except ValueError:
        # Different drives
        return
    if common in (source, archive):
        raise PreconditionMissingError(
            f"Source folder {source_root} overlaps the archive root {archive_root}; refusing to delete"
        )


class SafeDeleteResolver:
    """
    Resolves source populations against one ledger snapshot.

    Each source root is scanned with its own scanner (and thus its own
    digest cache), obtained from ``scanner_for``.
    """

    def __init__(
        self,
        snapshot: Optional[LedgerSnapshot],
        scanner_for: Callable[[str], PopulationScanner],
        archive_root: Optional[str] = None
    ):
        """
        Initialize resolver.

        Args:
            snapshot: Current ledger snapshot; None when no ledger exists
            scanner_for: Returns the scanner of a given source root
            archive_root: Archive folder; source roots overlapping it are refused
        """
        self.snapshot = snapshot
        self.scanner_for = scanner_for
        self.archive_root = archive_root

    def resolve(self, source_root: str) -> Resolution:
        """
        Partition the files under source_root into to_delete and to_keep.

        Files that cannot be read end up in ``failures`` only and are never
        deleted.

        Args:
            source_root: Folder whose files are candidates for deletion

        Returns:
            Resolution

        Raises:
            PreconditionMissingError: If the ledger is missing or empty, or
                source_root overlaps the archive root
            FileUnreadableError: If source_root itself cannot be read
        """
        if self.snapshot is None or self.snapshot.is_empty:
            raise PreconditionMissingError(
                "Provenance ledger is missing or empty; refusing to compute a deletion set"
            )
        if self.archive_root is not None:
            ensure_outside_archive(source_root, self.archive_root)

        scanner = self.scanner_for(source_root)
        inventory = list(scanner.scan(source_root))

        resolution = partition(inventory, self.snapshot.digests, source_root=source_root)
        resolution.failures = list(scanner.failures)

        # A file listed in the ledger is an archive copy, never a duplicate of one
        for path in sorted(resolution.to_delete):
            if path in self.snapshot.paths or os.path.realpath(path) in self.snapshot.paths:
                logger.warning(f"Keeping {path}: it is itself recorded in the ledger")
                resolution.to_delete.discard(path)
                resolution.to_keep.add(path)

        resolution.identities = {
            key.path: key for key in scanner.seen_keys if key.path in resolution.to_delete
        }

        scanner.digest_store.prune(scanner.seen_keys)
        scanner.digest_store.save()

        logger.info(
            f"Resolved {source_root}: {resolution.total} files, "
            f"{len(resolution.to_delete)} archived, {len(resolution.to_keep)} to keep, "
            f"{len(resolution.failures)} unreadable"
        )
        return resolution
