"""
Run Logs

Year-stamped, append-only records of what each run did:

- RunSummaryLog: human-readable text, one block per run plus one
  'datetime,action,path,status' line per affected file
- TransferLog: CSV with one row per transferred or remotely deleted file
- SyncWatermarks: JSON map of remote folder -> time of its last sync

Author: media-ledger Project
License: MIT
"""

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from ..utils.file_ops import TIMESTAMP_FORMAT, atomic_writer, now_string
from ..utils.logger import get_logger

logger = get_logger(__name__)

TRANSFER_LOG_COLUMNS = ("datetime", "action", "src_path", "dest_path", "status")


class RunSummaryLog:
    """
    Human-readable summary log at ``<logs_dir>/<name>_summary_<YEAR>.txt``.

    Example:
        ```
        [2025-06-01 10:00:00] resolve-and-delete run for /mnt/i/FraMobil
          Total files in /mnt/i/FraMobil: 120
        2025-06-01 10:00:05,deleted,/mnt/i/FraMobil/Camera/a.jpg,success
        ```
    """

    def __init__(self, logs_dir: str, name: str, year: Optional[int] = None):
        """
        Initialize summary log.

        Args:
            logs_dir: Directory holding the logs
            name: Log family, e.g. 'delete_copied' or 'sync'
            year: Year stamp (current year by default)
        """
        year = year or datetime.now().year
        self.path = Path(logs_dir) / f"{name}_summary_{year}.txt"

    def begin(self, title: str):
        """Start a new block with a timestamped title line."""
        self._append("")
        self._append(f"[{now_string()}] {title}")

    def note(self, text: str):
        """Add an indented line to the current block."""
        self._append(f"  {text}")

    def outcome(self, action: str, path: str, status: str):
        """Add a per-file outcome line."""
        self._append(f"{now_string()},{action},{path},{status}")

    def _append(self, line: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8', errors='surrogateescape') as f:
            f.write(line + "\n")


class TransferLog:
    """Per-file transfer CSV at ``<logs_dir>/device_sync_log_<YEAR>.csv``."""

    def __init__(self, logs_dir: str, year: Optional[int] = None):
        year = year or datetime.now().year
        self.path = Path(logs_dir) / f"device_sync_log_{year}.csv"

    def append(self, action: str, src_path: str, dest_path: str = "", status: str = "success"):
        """
        Append one row, writing the header first if the file is new.

        Args:
            action: copy, move or deleted
            src_path: Remote path
            dest_path: Local path (empty for remote deletions)
            status: success or fail
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists()
        with open(self.path, 'a', encoding='utf-8', errors='surrogateescape', newline='') as f:
            writer = csv.writer(f, lineterminator='\n')
            if is_new:
                writer.writerow(TRANSFER_LOG_COLUMNS)
            writer.writerow([now_string(), action, src_path, dest_path, status])


class SyncWatermarks:
    """
    Last successful sync time per remote folder, keyed by the exact remote
    folder path.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._marks: Optional[Dict[str, str]] = None

    @property
    def marks(self) -> Dict[str, str]:
        if self._marks is None:
            self._marks = self._load()
        return self._marks

    def get(self, remote_folder: str) -> Optional[datetime]:
        """Watermark of remote_folder, or None if it was never synced."""
        value = self.marks.get(remote_folder)
        if value is None:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring bad watermark {value!r} for {remote_folder}")
            return None

    def update(self, remote_folder: str, timestamp: datetime):
        """Set and persist the watermark of remote_folder."""
        self.marks[remote_folder] = timestamp.replace(microsecond=0).isoformat()
        with atomic_writer(self.path) as f:
            json.dump(self.marks, f, indent=2, sort_keys=True)
            f.write("\n")
        logger.info(f"Sync watermark for {remote_folder} set to {timestamp.strftime(TIMESTAMP_FORMAT)}")

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cannot read sync watermarks {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring sync watermarks {self.path}: not a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items()}
