"""
Configuration Schema and Models

Defines Pydantic models for the configuration schema, providing validation,
default values, and type checking for all configuration options.

Author: media-ledger Project
License: MIT
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, validator
from pathlib import Path


class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TransferMode(str, Enum):
    """How files leave the device."""
    COPY = "copy"
    MOVE = "move"


class DeviceConfig(BaseModel):
    """Remote device (phone running an SSH server) configuration."""

    host: str = Field(
        default="192.168.1.50",
        description="Device hostname or IP address"
    )
    port: int = Field(
        default=8022,
        description="SSH port on the device"
    )
    user: str = Field(
        default="u0_a123",
        description="SSH username on the device"
    )
    ssh_key: str = Field(
        default="~/.ssh/id_ed25519",
        description="Private key used to authenticate against the device"
    )
    remote_dir: str = Field(
        default="/storage/emulated/0/DCIM",
        description="Root folder on the device whose subfolders are synced"
    )
    exclude_folders: List[str] = Field(
        default=[".thumbnails"],
        description="Subfolder names on the device that are never offered"
    )
    exclude_before_date: Optional[str] = Field(
        default=None,
        description="Ignore device files older than this date (YYYY-MM-DD)"
    )
    connect_timeout: int = Field(
        default=5,
        description="SSH connection timeout in seconds"
    )
    command_timeout: int = Field(
        default=300,
        description="Remote command timeout in seconds"
    )

    @validator("remote_dir")
    def validate_remote_dir(cls, v):
        """Remote listing works on absolute paths only."""
        if not v.startswith("/"):
            raise ValueError(f"Device remote_dir must be absolute: {v}")
        return v.rstrip("/") or "/"

    @validator("exclude_before_date")
    def validate_date(cls, v):
        """Accept YYYY-MM-DD dates only."""
        if v is None:
            return v
        from datetime import datetime
        try:
            datetime.strptime(v, "%Y-%m-%d")
        except ValueError:
            raise ValueError(f"exclude_before_date must be YYYY-MM-DD: {v}")
        return v


class StagingConfig(BaseModel):
    """Local staging area that receives files from the device."""

    local_dir: str = Field(
        default="/mnt/media/from_device",
        description="Local folder that mirrors device subfolders"
    )
    rsync_binary: str = Field(
        default="rsync",
        description="rsync executable used for bulk transfer"
    )

    @validator("local_dir")
    def validate_local_dir(cls, v):
        """Ensure staging path is absolute."""
        if not Path(v).is_absolute():
            raise ValueError(f"Staging local_dir must be absolute: {v}")
        return v


class ArchiveConfig(BaseModel):
    """Durable destination whose content establishes 'safely preserved'."""

    root: str = Field(
        default="/mnt/media/imported_to_lightroom",
        description="Archive root scanned to build the provenance ledger"
    )

    @validator("root")
    def validate_root(cls, v):
        """Ensure archive root is absolute."""
        if not Path(v).is_absolute():
            raise ValueError(f"Archive root must be absolute: {v}")
        return v


class HashingConfig(BaseModel):
    """Content digest settings."""

    algorithm: str = Field(
        default="sha1",
        description="hashlib algorithm used for content digests"
    )
    chunk_size: int = Field(
        default=65536,
        description="Read size in bytes while hashing"
    )
    follow_symlinks: bool = Field(
        default=False,
        description="Follow symbolic links while scanning"
    )
    workers: int = Field(
        default=1,
        description="Threads used to hash files in parallel (1 = sequential)"
    )

    @validator("algorithm")
    def validate_algorithm(cls, v):
        """Reject algorithms hashlib does not know."""
        import hashlib
        v = v.lower()
        if v not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {v}")
        return v

    @validator("workers", "chunk_size")
    def validate_positive(cls, v):
        """Must be at least 1."""
        if v < 1:
            raise ValueError("Value must be >= 1")
        return v


class StateConfig(BaseModel):
    """Locations of persisted state. Relative paths resolve against state_dir."""

    state_dir: str = Field(
        default="~/.local/share/media-ledger",
        description="Base folder for caches, ledger and logs"
    )
    ledger_file: str = Field(
        default="imported_to_lightroom_hashes.csv",
        description="Provenance ledger CSV"
    )
    copy_log_file: str = Field(
        default="copied_device_files.log",
        description="Append-only copy/move tracker log"
    )
    watermark_file: str = Field(
        default="sync_watermarks.json",
        description="Per-folder last-sync timestamps"
    )
    digest_cache_dir: str = Field(
        default="digests",
        description="Folder holding one digest cache per population"
    )
    logs_dir: str = Field(
        default="logs",
        description="Folder for run summaries and transfer CSV logs"
    )
    lock_file: str = Field(
        default="media-ledger.lock",
        description="Run lock guarding against concurrent runs"
    )
    lock_timeout: float = Field(
        default=2.0,
        description="Seconds to wait for the run lock"
    )

    def resolve(self, value: str) -> Path:
        """
        Resolve a state path against state_dir.

        Args:
            value: Absolute path or path relative to state_dir

        Returns:
            Absolute path
        """
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return Path(self.state_dir).expanduser() / path


class DeletionConfig(BaseModel):
    """Safe-delete settings."""

    source_folders: List[str] = Field(
        default=[],
        description="Candidate source folders evaluated for safe deletion"
    )
    preview_limit: int = Field(
        default=20,
        description="Number of paths shown before asking for confirmation"
    )

    @validator("source_folders", each_item=True)
    def validate_source_folder(cls, v):
        """Ensure source folders are absolute."""
        if not Path(v).is_absolute():
            raise ValueError(f"Source folder must be absolute: {v}")
        return v


class AppConfig(BaseModel):
    """Main application configuration."""

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Application logging level"
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable logging to file"
    )
    log_file_path: Optional[str] = Field(
        default=None,
        description="Log file path (defaults to <logs_dir>/media_ledger.log)"
    )
    log_rotation_size: int = Field(
        default=10485760,  # 10MB
        description="Log file size before rotation (bytes)"
    )
    log_retention_count: int = Field(
        default=5,
        description="Number of rotated log files to keep"
    )
    json_format: bool = Field(
        default=False,
        description="Emit JSON log records"
    )

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class Config(BaseModel):
    """
    Root configuration model for media-ledger.

    Loaded from config.yaml and overridden by environment variables.
    """

    app: AppConfig = Field(default_factory=AppConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    staging: StagingConfig = Field(default_factory=StagingConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    hashing: HashingConfig = Field(default_factory=HashingConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    deletion: DeletionConfig = Field(default_factory=DeletionConfig)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        validate_assignment = True

    @validator("deletion")
    def validate_unique_sources(cls, v):
        """Ensure no duplicate source folders."""
        if len(v.source_folders) != len(set(v.source_folders)):
            raise ValueError("Duplicate source folders detected in configuration")
        return v
