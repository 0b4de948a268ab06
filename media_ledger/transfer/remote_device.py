"""
Remote Device Client
====================

SSH access to the media device (a phone running an SSH server such as
Termux sshd). Lists folders and files with their modification times and
removes files that are confirmed staged.

Connection handling:
- Key authentication only, no agent, no password
- Short connect timeout so an unreachable device fails fast
- One lazily opened connection per client, closed with close()

Author: media-ledger Project
License: MIT
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import paramiko
from paramiko import AutoAddPolicy, SSHClient

from ..errors import TransportUnavailableError
from ..utils.logger import get_logger

logger = get_logger(__name__)

FILTER_MODES = ("all", "since_last", "after", "before", "between")


@dataclass(frozen=True)
class RemoteFile:
    """A regular file on the device."""
    path: str
    mtime: int

    def relative_to(self, root: str) -> str:
        root = root.rstrip('/') + '/'
        return self.path[len(root):] if self.path.startswith(root) else self.path.lstrip('/')


@dataclass(frozen=True)
class DateFilter:
    """
    File selection by device modification time.

    Dates are 'YYYY-MM-DD' or 'YYYY-MM-DD HH:MM:SS' strings as understood by
    find -newermt. ``exclude_before`` is a floor applied to 'all',
    'since_last' and 'after'; the later of it and ``start`` wins.
    """
    mode: str = "since_last"
    start: Optional[str] = None
    end: Optional[str] = None
    exclude_before: Optional[str] = None

    def __post_init__(self):
        if self.mode not in FILTER_MODES:
            raise ValueError(f"Unknown date filter '{self.mode}', expected one of {', '.join(FILTER_MODES)}")
        if self.mode in ("after", "between") and not self.start:
            raise ValueError(f"Date filter '{self.mode}' needs a start date")
        if self.mode in ("before", "between") and not self.end:
            raise ValueError(f"Date filter '{self.mode}' needs an end date")

    def _floor(self) -> Optional[str]:
        candidates = [d for d in (self.start, self.exclude_before) if d]
        return max(candidates) if candidates else None

    def find_predicates(self) -> List[str]:
        """find(1) arguments implementing this filter, already shell-quoted."""
        if self.mode == "before":
            return ["!", "-newermt", shlex.quote(self.end)]
        if self.mode == "between":
            return ["-newermt", shlex.quote(self.start), "!", "-newermt", shlex.quote(self.end)]

        if self.mode == "all":
            floor = self.exclude_before
        else:
            # after, and since_last with the folder watermark as start
            floor = self._floor()
        return ["-newermt", shlex.quote(floor)] if floor else []

    def describe(self) -> str:
        if self.mode == "between":
            return f"between {self.start} and {self.end}"
        if self.mode == "before":
            return f"before {self.end}"
        if self.mode in ("after", "since_last") and self._floor():
            return f"{self.mode} {self._floor()}"
        return self.mode


class RemoteDevice:
    """
    SSH client for the media device.

    Example:
        ```python
        device = RemoteDevice(host="192.168.1.20", port=8022, user="u0_a123",
                              key_path="~/.ssh/id_ed25519",
                              remote_dir="/storage/emulated/0/DCIM")
        device.check_connection()
        for f in device.list_files("Camera", DateFilter("all")):
            print(f.path, f.mtime)
        device.close()
        ```
    """

    def __init__(
        self,
        host: str,
        user: str,
        key_path: str,
        remote_dir: str,
        port: int = 8022,
        connect_timeout: int = 5,
        command_timeout: int = 300
    ):
        """
        Initialize device client.

        Args:
            host: Device hostname or IP
            user: SSH user
            key_path: Private key file
            remote_dir: Media root on the device, e.g. /storage/emulated/0/DCIM
            port: SSH port (Termux default 8022)
            connect_timeout: Timeout for establishing the connection (seconds)
            command_timeout: Timeout for remote commands (seconds)
        """
        self.host = host
        self.user = user
        self.key_path = Path(key_path).expanduser()
        self.remote_dir = remote_dir.rstrip('/') or '/'
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._client: Optional[SSHClient] = None

    @classmethod
    def from_config(cls, device) -> 'RemoteDevice':
        """Build a client from a DeviceConfig."""
        return cls(
            host=device.host,
            user=device.user,
            key_path=device.ssh_key,
            remote_dir=device.remote_dir,
            port=device.port,
            connect_timeout=device.connect_timeout,
            command_timeout=device.command_timeout
        )

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def folder_path(self, folder: str) -> str:
        """Absolute device path of a subfolder of the media root."""
        return f"{self.remote_dir}/{folder.strip('/')}"

    def _connect(self) -> SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self.close()

        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())
        logger.info(f"Connecting to device {self.target}")
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                key_filename=str(self.key_path),
                timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TransportUnavailableError(
                f"Could not connect to device {self.target}: {e}. "
                f"Check that the SSH server is running on the device (e.g. 'sshd' in Termux)."
            )
        self._client = client
        return client

    def _run(self, command: str) -> str:
        """
        Run a command on the device.

        Returns:
            stdout

        Raises:
            TransportUnavailableError: On connection loss or non-zero exit
        """
        client = self._connect()
        logger.debug(f"Running on {self.target}: {command}")
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=self.command_timeout)
            exit_code = stdout.channel.recv_exit_status()
            stdout_data = stdout.read().decode('utf-8', errors='surrogateescape')
            stderr_data = stderr.read().decode('utf-8', errors='replace')
        except (paramiko.SSHException, OSError) as e:
            self.close()
            raise TransportUnavailableError(f"Command failed on {self.target}: {e}")

        if exit_code != 0:
            raise TransportUnavailableError(
                f"Command on {self.target} exited with {exit_code}: {stderr_data.strip()[:200]}"
            )
        return stdout_data

    def check_connection(self) -> bool:
        """
        Verify the device answers before any bulk work.

        Raises:
            TransportUnavailableError: If it does not
        """
        output = self._run("echo OK")
        if output.strip() != "OK":
            raise TransportUnavailableError(f"Unexpected reply from {self.target}: {output.strip()[:50]}")
        logger.info(f"Device {self.target} is reachable")
        return True

    def list_subfolders(self, exclude: Sequence[str] = ()) -> List[str]:
        """
        Subfolders of the media root, minus those starting with an excluded
        prefix.

        Returns:
            Sorted folder names
        """
        command = f"find {shlex.quote(self.remote_dir + '/')} -mindepth 1 -maxdepth 1 -type d -printf '%f\\n'"
        names = [line for line in self._run(command).splitlines() if line.strip()]
        kept = sorted(n for n in names if not any(n.startswith(prefix) for prefix in exclude if prefix))
        logger.info(f"Found {len(kept)} subfolders on device ({len(names) - len(kept)} excluded)")
        return kept

    def list_files(self, folder: str, date_filter: Optional[DateFilter] = None) -> List[RemoteFile]:
        """
        Regular files under a subfolder with their modification times.

        Args:
            folder: Subfolder name relative to the media root
            date_filter: Selection by modification time

        Returns:
            RemoteFile list sorted by path
        """
        date_filter = date_filter or DateFilter("all")
        parts = ["find", shlex.quote(self.folder_path(folder)), "-type", "f"]
        parts += date_filter.find_predicates()
        parts += ["-printf", shlex.quote("%T@ %p\\n")]

        files = []
        for line in self._run(" ".join(parts)).splitlines():
            stamp, sep, path = line.partition(' ')
            if not sep or not path:
                continue
            try:
                mtime = int(float(stamp))
            except ValueError:
                logger.warning(f"Skipping unparsable listing line: {line[:100]}")
                continue
            files.append(RemoteFile(path=path, mtime=mtime))

        files.sort(key=lambda f: f.path)
        logger.info(f"Listed {len(files)} files in {folder} ({date_filter.describe()})")
        return files

    def delete_file(self, path: str) -> bool:
        """
        Remove one file from the device.

        Returns:
            True on success; failures are logged, not raised
        """
        try:
            self._run(f"rm -f -- {shlex.quote(path)}")
        except TransportUnavailableError as e:
            logger.error(f"Failed to delete {path} on device: {e}")
            return False
        logger.info(f"Deleted {path} on device")
        return True

    def close(self):
        """Close the SSH connection."""
        if self._client is not None:
            try:
                self._client.close()
            except (paramiko.SSHException, OSError) as e:
                logger.debug(f"Error closing connection: {e}")
            self._client = None
