"""
File Operation Utilities

Provides hashing, atomic replacement of state files, and timestamp helpers
shared by the digest store, ledger and logs.

Author: media-ledger Project
License: MIT
"""

import os
import re
import hashlib
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO
from datetime import datetime

from .logger import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def calculate_file_hash(file_path: str, algorithm: str = "sha1", chunk_size: int = 65536) -> str:
    """
    Calculate hash of a file.

    Args:
        file_path: Path to the file
        algorithm: Hash algorithm (sha1, sha256, md5, etc.)
        chunk_size: Size of chunks to read (bytes)

    Returns:
        Hexadecimal hash string

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If algorithm is unsupported
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    try:
        hash_func = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    with open(file_path, 'rb') as f:
        while chunk := f.read(chunk_size):
            hash_func.update(chunk)

    return hash_func.hexdigest()


@contextmanager
def atomic_writer(target: Path, newline: Optional[str] = None) -> Iterator[TextIO]:
    """
    Open a temporary file next to target and replace target on success.

    Readers never see a half-written file: the temporary file lives in the
    same directory and is moved over the target with os.replace.

    Args:
        target: File to (re)write
        newline: Passed to open(); use '' for csv writers

    Yields:
        Writable text handle
    """
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', errors='surrogateescape', newline=newline) as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def birth_or_mtime(path: str, stat_result: Optional[os.stat_result] = None) -> float:
    """
    Creation time of a path if the filesystem exposes one, else its mtime.

    Args:
        path: File or directory
        stat_result: Pre-computed stat of path

    Returns:
        POSIX timestamp
    """
    st = stat_result if stat_result is not None else os.stat(path)
    birth = getattr(st, "st_birthtime", None)
    if birth:
        return birth
    return st.st_mtime


def format_timestamp(timestamp: float) -> str:
    """Format a POSIX timestamp as local 'YYYY-MM-DD HH:MM:SS'."""
    return datetime.fromtimestamp(timestamp).strftime(TIMESTAMP_FORMAT)


def now_string() -> str:
    """Current local time as 'YYYY-MM-DD HH:MM:SS'."""
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def population_name(root: str) -> str:
    """
    Stable, filesystem-safe name for a population root.

    Mirrors the basename of the root with non-alphanumerics replaced, plus a
    short digest of the absolute path so two roots with the same basename
    never share a cache.

    Args:
        root: Population root folder

    Returns:
        Name such as 'FraMobil_1a2b3c4d'
    """
    absolute = os.path.abspath(os.path.expanduser(root))
    base = re.sub(r'[^A-Za-z0-9]', '_', os.path.basename(absolute.rstrip(os.sep)) or "root")
    suffix = hashlib.sha1(absolute.encode('utf-8', errors='surrogateescape')).hexdigest()[:8]
    return f"{base}_{suffix}"

