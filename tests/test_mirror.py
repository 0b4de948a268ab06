"""
Unit Tests for the rsync Mirror

Tests command construction and exit-code handling with subprocess.run
mocked out.

Author: media-ledger Project
License: MIT
"""

import os
import subprocess
import pytest
from unittest.mock import MagicMock, patch

from media_ledger.errors import TransportUnavailableError
from media_ledger.transfer.mirror import RsyncMirror


@pytest.fixture
def mirror():
    """Mirror for a Termux device."""
    return RsyncMirror(host="phone", user="u0_a123", key_path="/keys/id", port=8022)


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestBuildCommand:
    """Test suite for build_command."""

    def test_copy_never_overwrites(self, mirror):
        """Test copy mode uses --ignore-existing."""
        command = mirror.build_command("/sdcard/DCIM/Camera", "/staging/Camera", "copy", "/tmp/list")

        assert "--ignore-existing" in command
        assert "--remove-source-files" not in command
        assert command[-2:] == ["u0_a123@phone:/sdcard/DCIM/Camera/", "/staging/Camera/"]
        assert "--files-from=/tmp/list" in command
        assert "ssh -i /keys/id -p 8022 -o ConnectTimeout=5 -o BatchMode=yes" in command

    def test_move_removes_sources(self, mirror):
        """Test move mode uses --remove-source-files."""
        command = mirror.build_command("/sdcard/DCIM/Camera/", "/staging/Camera", "move", "/tmp/list")

        assert "--remove-source-files" in command
        assert "--ignore-existing" not in command
        assert command[-2] == "u0_a123@phone:/sdcard/DCIM/Camera/"

    def test_unknown_mode(self, mirror):
        """Test unknown modes are rejected."""
        with pytest.raises(ValueError):
            mirror.build_command("/a", "/b", "sync", "/tmp/list")


class TestMirror:
    """Test suite for mirror."""

    def test_nothing_to_transfer(self, mirror, tmp_path):
        """Test an empty selection does not start rsync."""
        with patch('media_ledger.transfer.mirror.subprocess.run') as mock_run:
            result = mirror.mirror("/sdcard/DCIM/Camera", str(tmp_path / "Camera"), "copy", [])

        mock_run.assert_not_called()
        assert result.transferred == []
        assert result.success is True

    def test_transferred_files_reported(self, mirror, tmp_path):
        """Test rsync output lines become the transferred list."""
        seen = {}

        def fake_run(command, **kwargs):
            list_arg = next(arg for arg in command if arg.startswith("--files-from="))
            with open(list_arg.split("=", 1)[1], encoding="utf-8") as f:
                seen["list"] = f.read()
            return completed(stdout="sub/\nsub/b.jpg\na.jpg\n")

        with patch('media_ledger.transfer.mirror.subprocess.run', side_effect=fake_run):
            result = mirror.mirror("/sdcard/DCIM/Camera", str(tmp_path / "Camera"), "copy", ["a.jpg", "sub/b.jpg"])

        assert seen["list"] == "a.jpg\0sub/b.jpg\0"
        assert result.transferred == ["sub/b.jpg", "a.jpg"]
        assert result.success is True
        assert (tmp_path / "Camera").is_dir()

    def test_file_list_removed(self, mirror, tmp_path):
        """Test the temporary file list does not outlive the run."""
        paths = []

        def fake_run(command, **kwargs):
            paths.append(next(arg for arg in command if arg.startswith("--files-from=")).split("=", 1)[1])
            return completed()

        with patch('media_ledger.transfer.mirror.subprocess.run', side_effect=fake_run):
            mirror.mirror("/r", str(tmp_path), "copy", ["a.jpg"])

        assert not os.path.exists(paths[0])

    def test_rsync_missing(self, mirror, tmp_path):
        """Test a missing rsync binary is a transport failure."""
        with patch('media_ledger.transfer.mirror.subprocess.run', side_effect=FileNotFoundError("rsync")):
            with pytest.raises(TransportUnavailableError, match="rsync binary not found"):
                mirror.mirror("/r", str(tmp_path), "copy", ["a.jpg"])

    def test_timeout(self, mirror, tmp_path):
        """Test an rsync timeout is a transport failure."""
        error = subprocess.TimeoutExpired(cmd="rsync", timeout=1)
        with patch('media_ledger.transfer.mirror.subprocess.run', side_effect=error):
            with pytest.raises(TransportUnavailableError):
                mirror.mirror("/r", str(tmp_path), "copy", ["a.jpg"])

    def test_connection_failure_exit(self, mirror, tmp_path):
        """Test a non-zero rsync exit raises."""
        with patch('media_ledger.transfer.mirror.subprocess.run',
                   return_value=completed(255, stderr="ssh: connect to host phone port 8022: No route to host")):
            with pytest.raises(TransportUnavailableError, match="exited with 255"):
                mirror.mirror("/r", str(tmp_path), "copy", ["a.jpg"])

    def test_failure_keeps_transferred_files(self, mirror, tmp_path):
        """Test files moved before an rsync error travel with the exception."""
        with patch('media_ledger.transfer.mirror.subprocess.run',
                   return_value=completed(12, stdout="Camera/a.jpg\n", stderr="protocol data stream error")):
            with pytest.raises(TransportUnavailableError, match="after 1 files") as excinfo:
                mirror.mirror("/r", str(tmp_path), "move", ["Camera/a.jpg", "Camera/b.jpg"])

        assert excinfo.value.transferred == ["Camera/a.jpg"]

    def test_vanished_files_partial_success(self, mirror, tmp_path):
        """Test exit 24 returns what arrived instead of raising."""
        with patch('media_ledger.transfer.mirror.subprocess.run',
                   return_value=completed(24, stdout="a.jpg\n", stderr="file has vanished: b.jpg")):
            result = mirror.mirror("/r", str(tmp_path), "move", ["a.jpg", "b.jpg"])

        assert result.success is False
        assert result.transferred == ["a.jpg"]
        assert "vanished" in result.error

    def test_from_config(self):
        """Test construction from configuration models."""
        from media_ledger.config.schema import DeviceConfig, StagingConfig

        mirror = RsyncMirror.from_config(
            DeviceConfig(host="phone", user="me", ssh_key="/k", port=2222),
            StagingConfig(rsync_binary="/usr/local/bin/rsync"),
        )

        assert mirror.port == 2222
        assert mirror.rsync_binary == "/usr/local/bin/rsync"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
