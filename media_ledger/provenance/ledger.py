"""
Provenance Ledger

Durable CSV table of every file currently in the archive root: content
digest, location, best-known original name and timestamps. It is the single
source of truth for "has this content been archived".

The ledger is rebuilt on every run. Entries for unchanged files are carried
forward, new or changed files get fresh entries, vanished files are dropped,
and the result is written atomically in path order so that two rebuilds
over an unchanged archive produce byte-identical files.

Author: media-ledger Project
License: MIT
"""

import csv
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from ..errors import FileUnreadableError, MalformedRecordError, PreconditionMissingError
from ..utils.file_ops import atomic_writer, birth_or_mtime, format_timestamp
from ..utils.logger import get_logger
from .copy_tracker import CopyMoveTracker
from .digest_store import FileIdentityKey
from .scanner import PopulationScanner

logger = get_logger(__name__)

# Current column set, in write order
LEDGER_COLUMNS: Tuple[str, ...] = (
    "sha1sum",
    "absolute_path",
    "original_filename",
    "created_date",
    "archived_date",
    "modification_time",
    "size",
)

# Header names used by earlier ledger revisions
COLUMN_ALIASES = {
    "imported_date": "archived_date",
    "hash": "sha1sum",
    "path": "absolute_path",
}

REQUIRED_COLUMNS = ("sha1sum", "absolute_path")


@dataclass(frozen=True)
class LedgerEntry:
    """One archived file."""
    digest: str
    path: str
    original_filename: Optional[str] = None
    created_date: Optional[str] = None
    archived_date: Optional[str] = None
    modification_time: Optional[float] = None
    size: Optional[int] = None

    def matches(self, key: FileIdentityKey) -> bool:
        """Whether this entry describes the file identified by key."""
        return (
            self.path == key.path
            and self.modification_time == key.mtime
            and self.size == key.size
        )

    def to_row(self) -> List[str]:
        return [
            self.digest,
            self.path,
            self.original_filename or "",
            self.created_date or "",
            self.archived_date or "",
            "" if self.modification_time is None else repr(self.modification_time),
            "" if self.size is None else str(self.size),
        ]


class LedgerSnapshot:
    """
    Immutable view of the ledger at one point in time.

    Membership tests run against a frozen set of digests.
    """

    def __init__(self, entries: Sequence[LedgerEntry], source: Optional[str] = None):
        self.entries: Tuple[LedgerEntry, ...] = tuple(sorted(entries, key=lambda e: e.path))
        self.source = source
        self._by_digest: Dict[str, List[str]] = {}
        for entry in self.entries:
            self._by_digest.setdefault(entry.digest, []).append(entry.path)
        self.digests: FrozenSet[str] = frozenset(self._by_digest)
        self.paths: FrozenSet[str] = frozenset(entry.path for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(self.entries)

    def __contains__(self, digest: str) -> bool:
        return digest in self.digests

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def locations(self, digest: str) -> List[str]:
        """Archive paths currently holding this content."""
        return list(self._by_digest.get(digest, []))

    def by_path(self) -> Dict[str, LedgerEntry]:
        return {entry.path: entry for entry in self.entries}


@dataclass
class RebuildReport:
    """Counts from one ledger rebuild."""
    carried: int = 0
    added: int = 0
    dropped: int = 0
    failures: Optional[List[Tuple[str, str]]] = None

    @property
    def total(self) -> int:
        return self.carried + self.added


class ProvenanceLedger:
    """
    Ledger persisted as CSV at ``ledger_file``.

    Features:
    - Incremental rebuild from an archive scan
    - Header-driven reader accepting older 4/5-column revisions
    - Malformed rows skipped with a warning
    - Atomic replace on write
    """

    def __init__(
        self,
        ledger_file: str,
        scanner: PopulationScanner,
        copy_tracker: Optional[CopyMoveTracker] = None
    ):
        """
        Initialize ledger.

        Args:
            ledger_file: CSV path
            scanner: Scanner bound to the archive population's digest store
            copy_tracker: Source of original filenames for new entries
        """
        self.ledger_file = Path(ledger_file)
        self.scanner = scanner
        self.copy_tracker = copy_tracker
        self.last_report: Optional[RebuildReport] = None

    def exists(self) -> bool:
        return self.ledger_file.is_file()

    def load(self) -> LedgerSnapshot:
        """
        Read the persisted ledger.

        Returns:
            LedgerSnapshot

        Raises:
            PreconditionMissingError: If the ledger file does not exist or has
                no usable header
        """
        if not self.exists():
            raise PreconditionMissingError(
                f"Provenance ledger not found at {self.ledger_file}; run refresh-ledger first"
            )
        entries = list(self._read_entries())
        logger.info(f"Loaded ledger with {len(entries)} entries from {self.ledger_file}")
        return LedgerSnapshot(entries, source=str(self.ledger_file))

    def rebuild(self, archive_root: str) -> LedgerSnapshot:
        """
        Rebuild the ledger from the current content of archive_root.

        Args:
            archive_root: Archive folder

        Returns:
            Snapshot that exactly reflects archive_root

        Raises:
            FileUnreadableError: If archive_root cannot be read
        """
        previous = self._previous_entries()
        previous_by_digest: Dict[str, LedgerEntry] = {}
        for entry in previous.values():
            if entry.original_filename:
                previous_by_digest.setdefault(entry.digest, entry)

        report = RebuildReport()
        folder_dates: Dict[str, str] = {}
        entries: List[LedgerEntry] = []

        inventory = list(self.scanner.scan(archive_root))
        keys = {key.path: key for key in self.scanner.seen_keys}
        report.failures = list(self.scanner.failures)

        for item in inventory:
            key = keys[item.path]
            old = previous.get(item.path)
            if old is not None and old.matches(key) and old.digest == item.digest:
                entries.append(old)
                report.carried += 1
                continue

            try:
                entries.append(self._new_entry(item.digest, key, folder_dates, previous_by_digest))
            except FileUnreadableError as e:
                logger.warning(f"Skipping archive file {e.path}: {e.reason}")
                report.failures.append((e.path, e.reason))
                continue
            report.added += 1

        live = {entry.path for entry in entries}
        report.dropped = sum(1 for path in previous if path not in live)

        snapshot = LedgerSnapshot(entries, source=str(self.ledger_file))
        self._write(snapshot)

        self.scanner.digest_store.prune(self.scanner.seen_keys)
        self.scanner.digest_store.save()
        if self.copy_tracker is not None:
            self.copy_tracker.save_digests()

        self.last_report = report
        logger.info(
            f"Ledger rebuilt from {archive_root}: {report.carried} carried forward, "
            f"{report.added} added, {report.dropped} dropped, "
            f"{len(report.failures)} unreadable"
        )
        return snapshot

    def _new_entry(
        self,
        digest: str,
        key: FileIdentityKey,
        folder_dates: Dict[str, str],
        previous_by_digest: Dict[str, LedgerEntry]
    ) -> LedgerEntry:
        try:
            st = os.stat(key.path)
        except OSError as e:
            raise FileUnreadableError(key.path, e.strerror or str(e))
        created = format_timestamp(birth_or_mtime(key.path, st))

        parent = os.path.dirname(key.path)
        if parent not in folder_dates:
            # Folders are created per import batch
            try:
                folder_dates[parent] = format_timestamp(birth_or_mtime(parent))
            except OSError as e:
                raise FileUnreadableError(parent, e.strerror or str(e))

        original = None
        if self.copy_tracker is not None:
            original = self.copy_tracker.lookup_original_name(digest)
        if original is None and digest in previous_by_digest:
            original = previous_by_digest[digest].original_filename

        return LedgerEntry(
            digest=digest,
            path=key.path,
            original_filename=original,
            created_date=created,
            archived_date=folder_dates[parent],
            modification_time=key.mtime,
            size=key.size,
        )

    def _previous_entries(self) -> Dict[str, LedgerEntry]:
        if not self.exists():
            return {}
        try:
            return {entry.path: entry for entry in self._read_entries()}
        except PreconditionMissingError as e:
            # The rebuild replaces the file; start from a clean slate
            logger.warning(f"Ignoring unusable previous ledger: {e}")
            return {}

    def _write(self, snapshot: LedgerSnapshot):
        with atomic_writer(self.ledger_file, newline='') as f:
            writer = csv.writer(f, lineterminator='\n')
            writer.writerow(LEDGER_COLUMNS)
            for entry in snapshot.entries:
                writer.writerow(entry.to_row())
        logger.info(f"Wrote ledger with {len(snapshot)} entries to {self.ledger_file}")

    def _read_entries(self) -> Iterator[LedgerEntry]:
        with open(self.ledger_file, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if header is None:
                raise PreconditionMissingError(f"Provenance ledger {self.ledger_file} is empty")

            columns = [COLUMN_ALIASES.get(name.strip().lower(), name.strip().lower()) for name in header]
            missing = [name for name in REQUIRED_COLUMNS if name not in columns]
            if missing:
                raise PreconditionMissingError(
                    f"Provenance ledger {self.ledger_file} lacks columns: {', '.join(missing)}"
                )

            for row in reader:
                if not row:
                    continue
                try:
                    yield self._parse_row(columns, row, reader.line_num)
                except MalformedRecordError as e:
                    logger.warning(f"Skipping malformed ledger row: {e}")

    def _parse_row(self, columns: List[str], row: List[str], line_number: int) -> LedgerEntry:
        if len(row) != len(columns):
            raise MalformedRecordError(
                str(self.ledger_file), line_number,
                f"expected {len(columns)} fields, got {len(row)}", ",".join(row)
            )
        values = dict(zip(columns, row))

        digest = values["sha1sum"].strip().lower()
        path = values["absolute_path"]
        if not digest or not all(c in "0123456789abcdef" for c in digest):
            raise MalformedRecordError(str(self.ledger_file), line_number, f"bad digest {digest!r}")
        if not path:
            raise MalformedRecordError(str(self.ledger_file), line_number, "empty path")

        try:
            mtime = float(values["modification_time"]) if values.get("modification_time") else None
            size = int(values["size"]) if values.get("size") else None
        except ValueError:
            raise MalformedRecordError(str(self.ledger_file), line_number, "bad modification_time or size")

        return LedgerEntry(
            digest=digest,
            path=path,
            original_filename=values.get("original_filename") or None,
            created_date=values.get("created_date") or None,
            archived_date=values.get("archived_date") or None,
            modification_time=mtime,
            size=size,
        )
