"""
Population Scanner

Walks a directory tree in stable order and produces (digest, path) pairs,
reusing cached digests through the population's ContentDigestStore.

Author: media-ledger Project
License: MIT
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple

from ..errors import FileUnreadableError
from ..utils.file_ops import population_name
from ..utils.logger import get_logger
from .digest_store import ContentDigestStore, FileIdentityKey

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceInventoryEntry:
    """Content digest of one file found by a scan."""
    digest: str
    path: str


@dataclass
class ScanReport:
    """Materialized result of a full scan."""
    root: str
    entries: List[SourceInventoryEntry] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)


class PopulationScanner:
    """
    Produces the inventory of one folder.

    The scan is a lazy generator over regular files in lexicographic path
    order. Files that cannot be read are collected in ``failures`` and
    skipped; the scan never aborts for a single file.
    """

    def __init__(
        self,
        digest_store: ContentDigestStore,
        follow_symlinks: bool = False,
        workers: int = 1
    ):
        """
        Initialize scanner.

        Args:
            digest_store: Digest cache owned by this population
            follow_symlinks: Follow symbolic links (off by default to avoid cycles)
            workers: Hash misses with this many threads (1 = sequential)
        """
        self.digest_store = digest_store
        self.follow_symlinks = follow_symlinks
        self.workers = max(1, workers)
        self.failures: List[Tuple[str, str]] = []
        self.seen_keys: Set[FileIdentityKey] = set()

    def list_files(self, root: str) -> List[str]:
        """
        Regular files under root, sorted by absolute path.

        Raises:
            FileUnreadableError: If root is missing or not a directory
        """
        root_path = os.path.abspath(os.path.expanduser(str(root)))
        if not os.path.isdir(root_path):
            raise FileUnreadableError(root_path, "not a readable directory")

        files: List[str] = []
        visited: Set[Tuple[int, int]] = set()

        def on_error(error: OSError):
            logger.warning(f"Cannot list {error.filename}: {error.strerror}")
            self.failures.append((str(error.filename), error.strerror or str(error)))

        for dirpath, dirnames, filenames in os.walk(root_path, onerror=on_error, followlinks=self.follow_symlinks):
            if self.follow_symlinks:
                # Guard against symlink loops
                st = os.stat(dirpath)
                marker = (st.st_dev, st.st_ino)
                if marker in visited:
                    dirnames[:] = []
                    continue
                visited.add(marker)

            for name in filenames:
                path = os.path.join(dirpath, name)
                if os.path.islink(path) and not self.follow_symlinks:
                    continue
                if os.path.isfile(path):
                    files.append(path)

        files.sort()
        return files

    def scan(self, root: str) -> Iterator[SourceInventoryEntry]:
        """
        Yield the inventory of root.

        Resets ``failures`` and ``seen_keys`` so the scanner can be reused.

        Args:
            root: Folder to scan

        Yields:
            SourceInventoryEntry per readable file, in path order

        Raises:
            FileUnreadableError: If root itself is unreadable
        """
        self.failures = []
        self.seen_keys = set()
        files = self.list_files(root)
        logger.info(f"Scanning {len(files)} files under {root}")

        if self.workers > 1:
            yield from self._scan_parallel(files)
            return

        for path in files:
            entry = self._scan_one(path)
            if entry is not None:
                yield entry

    def scan_all(self, root: str, persist: bool = True) -> ScanReport:
        """
        Scan root completely, prune the digest store to the live files and
        persist it.

        Args:
            root: Folder to scan
            persist: Save the digest store afterwards

        Returns:
            ScanReport with entries and failures
        """
        report = ScanReport(root=str(root))
        report.entries = list(self.scan(root))
        report.failures = list(self.failures)

        self.digest_store.prune(self.seen_keys)
        if persist:
            self.digest_store.save()

        stats = f"{self.digest_store.hits} cached" if self.digest_store.hits else "no cache hits"
        logger.info(
            f"Scanned {report.total} files under {root} ({stats}, "
            f"{len(report.failures)} failures)"
        )
        return report

    def _identity(self, path: str) -> Optional[FileIdentityKey]:
        try:
            key = FileIdentityKey.from_path(path, follow_symlinks=self.follow_symlinks)
        except FileUnreadableError as e:
            self._record_failure(e)
            return None
        self.seen_keys.add(key)
        return key

    def _scan_one(self, path: str) -> Optional[SourceInventoryEntry]:
        key = self._identity(path)
        if key is None:
            return None
        try:
            digest = self.digest_store.get_or_compute(key)
        except FileUnreadableError as e:
            self._record_failure(e)
            return None
        return SourceInventoryEntry(digest=digest, path=path)

    def _scan_parallel(self, files: List[str]) -> Iterator[SourceInventoryEntry]:
        """Hash cache misses in a thread pool; output keeps path order."""
        keys = [self._identity(path) for path in files]
        misses = [key for key in keys if key is not None and self.digest_store.cached_digest(key) is None]

        computed = {}
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {key: pool.submit(self.digest_store.compute_digest, key.path) for key in misses}
            for key, future in futures.items():
                try:
                    computed[key] = future.result()
                except FileUnreadableError as e:
                    self._record_failure(e)

        for key in keys:
            if key is None:
                continue
            if key in computed:
                self.digest_store.store(key, computed[key])
                yield SourceInventoryEntry(digest=computed[key], path=key.path)
                continue
            digest = self.digest_store.cached_digest(key)
            if digest is not None:
                self.digest_store.hits += 1
                yield SourceInventoryEntry(digest=digest, path=key.path)

    def _record_failure(self, error: FileUnreadableError):
        logger.warning(f"Skipping unreadable file {error.path}: {error.reason}")
        self.failures.append((error.path, error.reason))


def build_scanner(digest_store: ContentDigestStore, hashing) -> PopulationScanner:
    """
    Scanner configured from the hashing section of the config.

    Args:
        digest_store: Population digest cache
        hashing: HashingConfig

    Returns:
        PopulationScanner
    """
    return PopulationScanner(
        digest_store,
        follow_symlinks=hashing.follow_symlinks,
        workers=hashing.workers
    )


def digest_cache_path(cache_dir: Path, root: str) -> Path:
    """Cache file of the population rooted at root."""
    return Path(cache_dir) / f"{population_name(root)}_hashes.txt"
