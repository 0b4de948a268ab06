"""
Content Digest Store

Per-population cache mapping a file's identity key (path, mtime, size) to
its content digest, so unchanged files are never re-hashed across runs.

Author: media-ledger Project
License: MIT
"""

import os
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set
from dataclasses import dataclass

from ..errors import FileUnreadableError, MalformedRecordError
from ..utils.file_ops import atomic_writer, calculate_file_hash
from ..utils.logger import get_logger

logger = get_logger(__name__)

CACHE_HEADER = "# media-ledger digest-cache v2"
# Files without an algorithm tag were written by sha1sum
UNTAGGED_ALGORITHM = "sha1"

# digest  mtime size  path
_V2_LINE = re.compile(r'^([0-9a-fA-F]+)  ([0-9][0-9.eE+-]*) (\d+)  (.+)$')
# sha1sum-style: digest, space, ' ' or '*', path
_LEGACY_LINE = re.compile(r'^([0-9a-fA-F]+) [ *](.+)$')


@dataclass(frozen=True)
class FileIdentityKey:
    """Cache key; a change in any field invalidates the cached digest."""
    path: str
    mtime: float
    size: int

    @classmethod
    def from_path(cls, path: str, follow_symlinks: bool = False) -> 'FileIdentityKey':
        """
        Build the identity key of a file on disk.

        Raises:
            FileUnreadableError: If the file cannot be stat'ed
        """
        try:
            st = os.stat(path, follow_symlinks=follow_symlinks)
        except OSError as e:
            raise FileUnreadableError(str(path), e.strerror or str(e))
        return cls(path=str(path), mtime=st.st_mtime, size=st.st_size)


@dataclass(frozen=True)
class DigestRecord:
    """Stored digest for one identity key. Legacy records have no identity."""
    digest: str
    mtime: Optional[float] = None
    size: Optional[int] = None

    def matches(self, key: FileIdentityKey) -> bool:
        """Whether this record is still valid for key."""
        return self.mtime == key.mtime and self.size == key.size


class ContentDigestStore:
    """
    Digest cache for a single file population.

    Features:
    - Identity-keyed reuse (path + mtime + size), no re-read on a hit
    - Streaming hash computation with a configurable algorithm
    - Pruning to the live population
    - Atomic persistence (write temp file, then replace)
    """

    def __init__(
        self,
        cache_file: Optional[str] = None,
        algorithm: str = "sha1",
        chunk_size: int = 65536
    ):
        """
        Initialize digest store.

        Args:
            cache_file: Backing file; None keeps the store in memory only
            algorithm: hashlib algorithm name
            chunk_size: Read size while hashing
        """
        self.cache_file = Path(cache_file) if cache_file else None
        self.algorithm = algorithm
        self.chunk_size = chunk_size
        self._records: Dict[str, DigestRecord] = {}
        self.dirty = False
        self.hits = 0
        self.misses = 0

        if self.cache_file and self.cache_file.exists():
            self._load()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: str) -> bool:
        return str(path) in self._records

    def paths(self) -> Iterator[str]:
        """Iterate stored paths in sorted order."""
        return iter(sorted(self._records))

    def lookup(self, path: str) -> Optional[DigestRecord]:
        """Stored record for path, valid or not."""
        return self._records.get(str(path))

    def get_or_compute(self, key: FileIdentityKey) -> str:
        """
        Return the digest for key, hashing the file only on a cache miss.

        Args:
            key: Current identity key of the file

        Returns:
            Hex digest

        Raises:
            FileUnreadableError: If the file cannot be read
        """
        record = self._records.get(key.path)
        if record is not None and record.matches(key):
            self.hits += 1
            return record.digest

        self.misses += 1
        digest = self.compute_digest(key.path)
        self._records[key.path] = DigestRecord(digest=digest, mtime=key.mtime, size=key.size)
        self.dirty = True
        return digest

    def cached_digest(self, key: FileIdentityKey) -> Optional[str]:
        """Digest for key if a valid record exists, without hashing."""
        record = self._records.get(key.path)
        if record is not None and record.matches(key):
            return record.digest
        return None

    def store(self, key: FileIdentityKey, digest: str) -> None:
        """Upsert a digest computed elsewhere (e.g. by a worker thread)."""
        self.misses += 1
        self._records[key.path] = DigestRecord(digest=digest, mtime=key.mtime, size=key.size)
        self.dirty = True

    def compute_digest(self, path: str) -> str:
        """
        Stream a file through the configured hash.

        Raises:
            FileUnreadableError: If the file vanished or is not readable
        """
        try:
            digest = calculate_file_hash(str(path), self.algorithm, self.chunk_size)
        except OSError as e:
            raise FileUnreadableError(str(path), e.strerror or str(e))
        logger.debug(f"Hashed {path}")
        return digest

    def forget(self, path: str) -> bool:
        """Drop the record for path. Returns True if one existed."""
        if self._records.pop(str(path), None) is not None:
            self.dirty = True
            return True
        return False

    def prune(self, current_keys: Iterable[FileIdentityKey]) -> int:
        """
        Remove records whose path is not part of the current population.

        Args:
            current_keys: Identity keys seen in the latest scan

        Returns:
            Number of records removed
        """
        live: Set[str] = {key.path for key in current_keys}
        stale = [path for path in self._records if path not in live]
        for path in stale:
            del self._records[path]
        if stale:
            self.dirty = True
            logger.info(f"Pruned {len(stale)} entries from digest cache")
        return len(stale)

    def save(self, force: bool = False) -> None:
        """Persist the store atomically. Skipped when nothing changed."""
        if not self.cache_file or not (self.dirty or force):
            return

        with atomic_writer(self.cache_file) as f:
            f.write(f"{CACHE_HEADER} {self.algorithm}\n")
            for path in sorted(self._records):
                record = self._records[path]
                if record.mtime is None or record.size is None:
                    f.write(f"{record.digest}  {path}\n")
                else:
                    f.write(f"{record.digest}  {record.mtime!r} {record.size}  {path}\n")
        self.dirty = False
        logger.info(f"Saved digest cache with {len(self._records)} entries to {self.cache_file}")

    def _load(self):
        """Load records from the backing file, skipping malformed lines."""
        skipped = 0
        cached_algorithm = UNTAGGED_ALGORITHM
        with open(self.cache_file, 'r', encoding='utf-8', errors='surrogateescape') as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.rstrip('\n')
                if line.startswith(CACHE_HEADER):
                    cached_algorithm = line[len(CACHE_HEADER):].strip().lower() or UNTAGGED_ALGORITHM
                    continue
                if not line or line.startswith('#'):
                    continue
                try:
                    path, record = self._parse_line(line, line_number)
                except MalformedRecordError as e:
                    skipped += 1
                    logger.warning(f"Skipping malformed digest record: {e}")
                    continue
                self._records[path] = record

        if cached_algorithm != self.algorithm.lower():
            logger.warning(
                f"Discarding digest cache {self.cache_file}: written with {cached_algorithm}, "
                f"configured algorithm is {self.algorithm}"
            )
            self._records.clear()
            self.dirty = True
            return

        logger.info(f"Loaded digest cache with {len(self._records)} entries from {self.cache_file}")
        if skipped:
            # Rewrite without the bad lines on the next save
            self.dirty = True

    def _parse_line(self, line: str, line_number: int):
        match = _V2_LINE.match(line)
        if match:
            digest, mtime, size, path = match.groups()
            try:
                return path, DigestRecord(digest=digest.lower(), mtime=float(mtime), size=int(size))
            except ValueError:
                raise MalformedRecordError(str(self.cache_file), line_number, "bad mtime or size", line)

        match = _LEGACY_LINE.match(line)
        if match:
            digest, path = match.groups()
            return path, DigestRecord(digest=digest.lower())

        raise MalformedRecordError(str(self.cache_file), line_number, "unrecognised record", line)
