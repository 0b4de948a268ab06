"""
Run Lock

Guards the refresh, sync and delete pipelines against concurrent runs on the
same state directory. Ledger and cache files are rewritten wholesale, so two
overlapping runs would lose each other's updates.

Author: media-ledger Project
License: MIT
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout

from ..errors import PreconditionMissingError
from .logger import get_logger

logger = get_logger(__name__)


@contextmanager
def run_lock(lock_path: Path, timeout: float = 2.0) -> Iterator[FileLock]:
    """
    Hold the run lock for the duration of the block.

    Args:
        lock_path: Lock file location
        timeout: Seconds to wait before giving up

    Raises:
        PreconditionMissingError: Another run holds the lock
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path))
    try:
        lock.acquire(timeout=timeout)
    except Timeout:
        raise PreconditionMissingError(
            f"Another media-ledger run holds {lock_path}; wait for it to finish"
        )
    logger.debug(f"Acquired run lock {lock_path}")
    try:
        yield lock
    finally:
        lock.release()
        logger.debug(f"Released run lock {lock_path}")
