"""
Bulk Transfer

Mirrors a selected list of device files into a local staging folder with
rsync over ssh, and reports which files were actually transferred.

Author: media-ledger Project
License: MIT
"""

import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import TransportUnavailableError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# rsync: "partial transfer due to vanished source files"
RSYNC_VANISHED = 24


class TransferResult:
    """Result of one mirror call."""

    def __init__(
        self,
        transferred: Optional[List[str]] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """
        Initialize transfer result.

        Args:
            transferred: Paths (relative to the folder) that arrived locally
            success: Whether every requested file was handled
            error: Human-readable error message
        """
        self.transferred = transferred or []
        self.success = success
        self.error = error

    def __repr__(self) -> str:
        return f"TransferResult(transferred={len(self.transferred)}, success={self.success})"


class RsyncMirror:
    """
    rsync-over-ssh transfer from the device.

    copy mode never overwrites existing local files (--ignore-existing);
    move mode removes each source file once it has been transferred.
    """

    def __init__(
        self,
        host: str,
        user: str,
        key_path: str,
        port: int = 8022,
        rsync_binary: str = "rsync",
        connect_timeout: int = 5,
        timeout: Optional[int] = None
    ):
        """
        Initialize mirror.

        Args:
            host: Device hostname or IP
            user: SSH user
            key_path: Private key file
            port: SSH port
            rsync_binary: rsync executable
            connect_timeout: ssh ConnectTimeout (seconds)
            timeout: Overall timeout for one rsync run (seconds)
        """
        self.host = host
        self.user = user
        self.key_path = str(Path(key_path).expanduser())
        self.port = port
        self.rsync_binary = rsync_binary
        self.connect_timeout = connect_timeout
        self.timeout = timeout

    @classmethod
    def from_config(cls, device, staging) -> 'RsyncMirror':
        """Build a mirror from DeviceConfig and StagingConfig."""
        return cls(
            host=device.host,
            user=device.user,
            key_path=device.ssh_key,
            port=device.port,
            rsync_binary=staging.rsync_binary,
            connect_timeout=device.connect_timeout
        )

    def build_command(self, remote_folder: str, local_folder: str, mode: str, files_from: str) -> List[str]:
        """rsync argument vector for one folder."""
        ssh = f"ssh -i {self.key_path} -p {self.port} -o ConnectTimeout={self.connect_timeout} -o BatchMode=yes"
        command = [
            self.rsync_binary,
            "-a",
            "--protect-args",
            "--out-format=%n",
            "--from0",
            f"--files-from={files_from}",
            "-e", ssh,
        ]
        if mode == "copy":
            command.append("--ignore-existing")
        elif mode == "move":
            command.append("--remove-source-files")
        else:
            raise ValueError(f"Unknown transfer mode: {mode}")

        command.append(f"{self.user}@{self.host}:{remote_folder.rstrip('/')}/")
        command.append(f"{str(local_folder).rstrip(os.sep)}/")
        return command

    def mirror(
        self,
        remote_folder: str,
        local_folder: str,
        mode: str,
        files: Sequence[str]
    ) -> TransferResult:
        """
        Transfer files (relative to remote_folder) into local_folder.

        Args:
            remote_folder: Absolute folder on the device
            local_folder: Local staging folder
            mode: 'copy' or 'move'
            files: Relative paths to transfer

        Returns:
            TransferResult listing what arrived

        Raises:
            TransportUnavailableError: If rsync is missing or fails; files that
                arrived before the failure are on the exception
        """
        if not files:
            return TransferResult()

        Path(local_folder).mkdir(parents=True, exist_ok=True)

        fd, list_file = tempfile.mkstemp(prefix="media-ledger-files.", suffix=".lst")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', errors='surrogateescape') as handle:
                handle.write("\0".join(files) + "\0")

            command = self.build_command(remote_folder, local_folder, mode, list_file)
            logger.info(f"Starting {mode} of {len(files)} files from {remote_folder} to {local_folder}")
            logger.debug(f"rsync command: {' '.join(command)}")

            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    errors='surrogateescape',
                    timeout=self.timeout
                )
            except FileNotFoundError:
                raise TransportUnavailableError(f"rsync binary not found: {self.rsync_binary}")
            except subprocess.TimeoutExpired:
                raise TransportUnavailableError(f"rsync timed out after {self.timeout}s for {remote_folder}")
        finally:
            os.unlink(list_file)

        transferred = [
            line for line in result.stdout.splitlines()
            if line.strip() and not line.endswith('/')
        ]

        if result.returncode == RSYNC_VANISHED:
            message = f"Some files vanished on the device during transfer: {result.stderr.strip()[:200]}"
            logger.warning(message)
            return TransferResult(transferred=transferred, success=False, error=message)

        if result.returncode != 0:
            # In move mode these are already gone from the device
            raise TransportUnavailableError(
                f"rsync exited with {result.returncode} for {remote_folder} after "
                f"{len(transferred)} files: {result.stderr.strip()[:200]}",
                transferred=transferred
            )

        logger.info(f"Transferred {len(transferred)} files from {remote_folder}")
        return TransferResult(transferred=transferred)
