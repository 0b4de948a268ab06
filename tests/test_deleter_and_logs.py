"""
Unit Tests for the Deletion Executor and Run Logs

Author: media-ledger Project
License: MIT
"""

import json
import os
import pytest
from datetime import datetime

from media_ledger.core.deleter import Deleter, DeletionStatus
from media_ledger.provenance.digest_store import FileIdentityKey
from media_ledger.core.run_log import (
    TRANSFER_LOG_COLUMNS,
    RunSummaryLog,
    SyncWatermarks,
    TransferLog,
)


class TestDeleter:
    """Test suite for Deleter."""

    def test_deletes_files(self, tmp_path):
        """Test confirmed files are removed."""
        a = tmp_path / "a.jpg"
        b = tmp_path / "b.jpg"
        a.write_bytes(b"a")
        b.write_bytes(b"b")

        report = Deleter().delete([str(a), str(b)])

        assert report.deleted == 2
        assert report.failed == 0
        assert not a.exists() and not b.exists()

    def test_dry_run_keeps_files(self, tmp_path):
        """Test dry-run reports without touching the filesystem."""
        a = tmp_path / "a.jpg"
        a.write_bytes(b"a")

        report = Deleter().delete([str(a)], dry_run=True)

        assert a.exists()
        assert report.would_delete == 1
        assert report.outcomes[0].status == DeletionStatus.DRYRUN
        assert report.outcomes[0].success is True

    def test_failure_does_not_stop_batch(self, tmp_path):
        """Test a missing file fails alone."""
        gone = tmp_path / "gone.jpg"
        b = tmp_path / "b.jpg"
        b.write_bytes(b"b")

        report = Deleter().delete([str(gone), str(b)])

        assert report.failed == 1
        assert report.deleted == 1
        assert report.outcomes[0].status == DeletionStatus.FAILED
        assert report.outcomes[0].error
        assert not b.exists()

    def test_unchanged_file_deleted(self, tmp_path):
        """Test a file matching its scanned identity is removed."""
        a = tmp_path / "a.jpg"
        a.write_bytes(b"a")
        expected = {str(a): FileIdentityKey.from_path(str(a))}

        report = Deleter().delete([str(a)], expected=expected)

        assert report.deleted == 1
        assert not a.exists()

    def test_file_modified_after_scan_kept(self, tmp_path):
        """Test a file edited after hashing fails instead of being deleted."""
        a = tmp_path / "a.jpg"
        a.write_bytes(b"a")
        expected = {str(a): FileIdentityKey.from_path(str(a))}
        a.write_bytes(b"edited in the meantime")
        os.utime(a, (1700000000, 1700000000))

        report = Deleter().delete([str(a)], expected=expected)

        assert report.failed == 1
        assert report.outcomes[0].error == "modified since it was scanned"
        assert a.read_bytes() == b"edited in the meantime"

    """Test suite for RunSummaryLog."""

    def test_block_layout(self, tmp_path):
        """Test title, notes and outcome lines."""
        log = RunSummaryLog(str(tmp_path), "delete_copied", year=2025)

        log.begin("resolve-and-delete run for /src")
        log.note("Total files in /src: 2")
        log.outcome("deleted", "/src/a.jpg", "success")

        lines = log.path.read_text().splitlines()
        assert log.path.name == "delete_copied_summary_2025.txt"
        assert lines[0] == ""
        assert lines[1].startswith("[") and lines[1].endswith("] resolve-and-delete run for /src")
        assert lines[2] == "  Total files in /src: 2"
        assert lines[3].endswith(",deleted,/src/a.jpg,success")

    def test_appends_across_runs(self, tmp_path):
        """Test a second run adds a block instead of truncating."""
        RunSummaryLog(str(tmp_path), "sync", year=2025).begin("first")
        log = RunSummaryLog(str(tmp_path), "sync", year=2025)
        log.begin("second")

        text = log.path.read_text()
        assert "first" in text and "second" in text


class TestTransferLog:
    """Test suite for TransferLog."""

    def test_header_written_once(self, tmp_path):
        """Test the CSV header precedes the first row only."""
        log = TransferLog(str(tmp_path), year=2025)

        log.append("copy", "/sdcard/DCIM/Camera/a.jpg", "/staging/Camera/a.jpg")
        log.append("deleted", "/sdcard/DCIM/Camera/a.jpg")

        lines = log.path.read_text().splitlines()
        assert log.path.name == "device_sync_log_2025.csv"
        assert lines[0] == ",".join(TRANSFER_LOG_COLUMNS)
        assert lines[1].endswith(",copy,/sdcard/DCIM/Camera/a.jpg,/staging/Camera/a.jpg,success")
        assert lines[2].endswith(",deleted,/sdcard/DCIM/Camera/a.jpg,,success")
        assert len(lines) == 3


class TestSyncWatermarks:
    """Test suite for SyncWatermarks."""

    def test_missing_file(self, tmp_path):
        """Test a folder never synced has no watermark."""
        assert SyncWatermarks(str(tmp_path / "marks.json")).get("/sdcard/DCIM/Camera") is None

    def test_update_and_reload(self, tmp_path):
        """Test watermarks persist per exact folder path."""
        path = tmp_path / "marks.json"
        SyncWatermarks(str(path)).update("/sdcard/DCIM/Camera", datetime(2025, 6, 1, 10, 30, 5, 123))

        marks = SyncWatermarks(str(path))

        assert marks.get("/sdcard/DCIM/Camera") == datetime(2025, 6, 1, 10, 30, 5)
        assert marks.get("/sdcard/DCIM/Camera/") is None
        assert json.loads(path.read_text()) == {"/sdcard/DCIM/Camera": "2025-06-01T10:30:05"}

    def test_corrupt_file_ignored(self, tmp_path):
        """Test unreadable JSON behaves like no watermarks."""
        path = tmp_path / "marks.json"
        path.write_text("{not json")

        assert SyncWatermarks(str(path)).get("/x") is None

    def test_bad_value_ignored(self, tmp_path):
        """Test a malformed timestamp is treated as missing."""
        path = tmp_path / "marks.json"
        path.write_text('{"/x": "last tuesday"}')

        assert SyncWatermarks(str(path)).get("/x") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
