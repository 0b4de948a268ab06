"""
Copy/Move Tracker

Append-only record of files that arrived in the local staging folder from
the device. Answers two questions: was this device file already fetched
(relative path + mtime), and what was the original name of some content that
later shows up, possibly renamed, in the archive.

Author: media-ledger Project
License: MIT
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..errors import FileUnreadableError, MalformedRecordError
from ..utils.file_ops import atomic_writer
from ..utils.logger import get_logger
from .digest_store import ContentDigestStore, FileIdentityKey

logger = get_logger(__name__)


@dataclass(frozen=True)
class CopyRecord:
    """One staged file: absolute local path and its modification time."""
    path: str
    mtime: Optional[int] = None

    def to_line(self) -> str:
        if self.mtime is None:
            return self.path
        return f"{self.path}|{self.mtime}"

    @classmethod
    def parse(cls, line: str, source: str = "<copy log>", line_number: int = 0) -> 'CopyRecord':
        """
        Parse a 'path|mtime' line. Bare paths written by older tooling
        parse as records without a modification time.

        Raises:
            MalformedRecordError: On an empty path or a non-numeric mtime
        """
        path, sep, mtime = line.rpartition('|')
        if not sep:
            return cls(path=line)
        if not path:
            raise MalformedRecordError(source, line_number, "empty path", line)
        try:
            # Older logs carry float seconds
            value = int(float(mtime))
        except ValueError:
            raise MalformedRecordError(source, line_number, f"bad modification time {mtime!r}", line)
        return cls(path=path, mtime=value)


class CopyMoveTracker:
    """
    Tracker over the copy/move log.

    The log is only ever appended to; ``compact`` may rewrite it without
    exact duplicate lines, which keeps every distinct record and therefore
    every answerable original-name lookup.
    """

    def __init__(
        self,
        log_file: str,
        staging_roots: Iterable[str] = (),
        digest_store: Optional[ContentDigestStore] = None
    ):
        """
        Initialize tracker.

        Args:
            log_file: Copy/move log path
            staging_roots: Local roots that mirror device folders; used to
                turn absolute local paths into device-relative paths
            digest_store: Digest cache of the device-copied population, used
                for reverse lookups
        """
        self.log_file = Path(log_file)
        self.staging_roots = [os.path.abspath(str(root)).rstrip(os.sep) for root in staging_roots]
        self.digest_store = digest_store or ContentDigestStore()
        self._records: Optional[List[CopyRecord]] = None
        self._copied_keys: Optional[Set[Tuple[str, int]]] = None
        self._digest_to_name: Optional[Dict[str, str]] = None

    @property
    def records(self) -> List[CopyRecord]:
        """All records in log order (loaded lazily)."""
        if self._records is None:
            self._records = self._load()
        return self._records

    def record(self, local_path: str, modification_time: float) -> CopyRecord:
        """
        Append one record to the log.

        Args:
            local_path: Absolute path of the staged file
            modification_time: mtime of the staged file (seconds)

        Returns:
            The appended record
        """
        entry = CopyRecord(path=os.path.abspath(str(local_path)), mtime=int(modification_time))
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, 'a', encoding='utf-8', errors='surrogateescape') as f:
            f.write(entry.to_line() + "\n")
        self._remember(entry)
        return entry

    def record_population(self, folder: str) -> int:
        """
        Record every regular file currently present under folder.

        Files whose exact (path, mtime) record is already in the log are not
        appended again.

        Args:
            folder: Local staging subfolder

        Returns:
            Number of records appended
        """
        known = set(self.records)
        lines = []
        for dirpath, _, filenames in os.walk(str(folder)):
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if not os.path.isfile(path) or os.path.islink(path):
                    continue
                try:
                    mtime = os.stat(path).st_mtime
                except OSError as e:
                    logger.warning(f"Cannot stat staged file {path}: {e}")
                    continue
                entry = CopyRecord(path=os.path.abspath(path), mtime=int(mtime))
                if entry not in known:
                    lines.append(entry)

        if not lines:
            return 0

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, 'a', encoding='utf-8', errors='surrogateescape') as f:
            for entry in lines:
                f.write(entry.to_line() + "\n")
        for entry in lines:
            self._remember(entry)

        logger.info(f"Recorded {len(lines)} staged files from {folder}")
        return len(lines)

    def relative_path(self, local_path: str) -> str:
        """
        Device-relative form of a staged path.

        Strips the first configured staging root the path lives under; paths
        outside every root are returned unchanged.
        """
        path = os.path.abspath(str(local_path))
        for root in self.staging_roots:
            if path.startswith(root + os.sep):
                return path[len(root) + 1:]
        return path

    def was_copied(self, relative_path: str, modification_time: float) -> bool:
        """
        Whether a device file with this relative path and mtime is staged.

        Args:
            relative_path: Path relative to the device root, e.g. 'Camera/a.jpg'
            modification_time: Device-side mtime in seconds
        """
        if self._copied_keys is None:
            self._copied_keys = {
                (self.relative_path(entry.path), entry.mtime) for entry in self.records
            }
        return (relative_path.lstrip('/'), int(modification_time)) in self._copied_keys

    def lookup_original_name(self, content_digest: str) -> Optional[str]:
        """
        Original filename of content that passed through staging.

        Digests of tracked files are computed on first use (reusing the
        tracker's digest cache) for files that still exist.

        Args:
            content_digest: Digest to look up

        Returns:
            Basename of the first tracked file with that content, or None
        """
        if self._digest_to_name is None:
            self._digest_to_name = self._build_reverse_index()
        return self._digest_to_name.get(content_digest.lower())

    def compact(self) -> int:
        """
        Rewrite the log without exact duplicate records.

        Returns:
            Number of lines dropped
        """
        if not self.log_file.exists():
            return 0

        seen = set()
        unique: List[CopyRecord] = []
        for entry in self.records:
            if entry in seen:
                continue
            seen.add(entry)
            unique.append(entry)

        dropped = len(self.records) - len(unique)
        if dropped:
            with atomic_writer(self.log_file) as f:
                for entry in unique:
                    f.write(entry.to_line() + "\n")
            self._records = unique
            logger.info(f"Compacted copy log: dropped {dropped} duplicate lines")
        return dropped

    def hash_staged(self, paths: Iterable[str]) -> int:
        """
        Hash newly staged files into the tracker's digest cache while they
        are still in staging, so later lookups survive their removal.

        Returns:
            Number of files hashed or confirmed from cache
        """
        count = 0
        for path in paths:
            try:
                key = FileIdentityKey.from_path(os.path.abspath(str(path)))
                self.digest_store.get_or_compute(key)
            except FileUnreadableError as e:
                logger.warning(f"Cannot hash staged file {e.path}: {e.reason}")
                continue
            count += 1
        self._digest_to_name = None
        self.digest_store.save()
        return count

    def save_digests(self) -> None:
        """Persist the tracker's digest cache."""
        self.digest_store.save()

    def _build_reverse_index(self) -> Dict[str, str]:
        index: Dict[str, str] = {}
        checked = set()
        for entry in self.records:
            if entry.path in checked:
                continue
            checked.add(entry.path)
            if not os.path.isfile(entry.path):
                # Content moved on; keep whatever the cache still knows
                cached = self.digest_store.lookup(entry.path)
                if cached is not None:
                    index.setdefault(cached.digest, os.path.basename(entry.path))
                continue
            try:
                key = FileIdentityKey.from_path(entry.path)
                digest = self.digest_store.get_or_compute(key)
            except FileUnreadableError as e:
                logger.warning(f"Cannot hash tracked file {e.path}: {e.reason}")
                continue
            index.setdefault(digest, os.path.basename(entry.path))
        logger.info(f"Indexed {len(index)} tracked digests for original-name lookups")
        return index

    def _remember(self, entry: CopyRecord):
        if self._records is not None:
            self._records.append(entry)
        if self._copied_keys is not None:
            self._copied_keys.add((self.relative_path(entry.path), entry.mtime))
        # New content invalidates the reverse index
        self._digest_to_name = None

    def _load(self) -> List[CopyRecord]:
        records: List[CopyRecord] = []
        if not self.log_file.exists():
            return records

        with open(self.log_file, 'r', encoding='utf-8', errors='surrogateescape') as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.rstrip('\n')
                if not line.strip():
                    continue
                try:
                    records.append(CopyRecord.parse(line, str(self.log_file), line_number))
                except MalformedRecordError as e:
                    logger.warning(f"Skipping malformed copy record: {e}")
        logger.debug(f"Loaded {len(records)} copy records from {self.log_file}")
        return records
