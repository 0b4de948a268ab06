"""
Unit Tests for Configuration Module

Tests configuration loading, validation, environment variable merging,
and error handling.

Author: media-ledger Project
License: MIT
"""

import pytest
from pathlib import Path

from media_ledger.config.config_loader import ConfigLoader, load_config
from media_ledger.config.schema import (
    Config,
    DeviceConfig,
    HashingConfig,
    StateConfig,
    ArchiveConfig,
    TransferMode,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in (
        "CONFIG_PATH", "APP_LOG_LEVEL", "APP_LOG_JSON", "DEVICE_HOST", "DEVICE_PORT",
        "DEVICE_USER", "DEVICE_SSH_KEY", "DEVICE_REMOTE_DIR", "STAGING_DIR",
        "ARCHIVE_ROOT", "STATE_DIR", "SOURCE_FOLDERS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfigLoader:
    """Test suite for ConfigLoader class."""

    def test_create_default_config(self):
        """Test default configuration creation."""
        loader = ConfigLoader()
        default_config = loader._create_default_config()

        assert "device" in default_config
        assert "archive" in default_config
        assert default_config["device"]["port"] == 8022
        assert default_config["app"]["log_level"] == "INFO"

    def test_load_nonexistent_config_uses_defaults(self, tmp_path):
        """Test that a missing config file yields defaults."""
        loader = ConfigLoader(str(tmp_path / "config.yaml"))

        config = loader.load()

        assert isinstance(config, Config)
        assert config.device.remote_dir == "/storage/emulated/0/DCIM"
        assert config.hashing.algorithm == "sha1"
        assert config.deletion.preview_limit == 20

    def test_load_yaml_file(self, tmp_path):
        """Test values from a YAML file."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "device:\n"
            "  host: phone.local\n"
            "  exclude_before_date: '2024-01-01'\n"
            "archive:\n"
            "  root: /srv/archive\n"
            "deletion:\n"
            "  source_folders: [/srv/staging]\n"
        )

        config = ConfigLoader(str(config_path)).load()

        assert config.device.host == "phone.local"
        assert config.device.exclude_before_date == "2024-01-01"
        assert config.archive.root == "/srv/archive"
        assert config.deletion.source_folders == ["/srv/staging"]

    def test_invalid_yaml_raises_error(self, tmp_path):
        """Test that broken YAML is reported as ValueError."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("device: [unclosed\n")

        with pytest.raises(ValueError, match="Failed to parse YAML"):
            ConfigLoader(str(config_path)).load()

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("APP_LOG_LEVEL", "debug")
        monkeypatch.setenv("DEVICE_HOST", "10.0.0.7")
        monkeypatch.setenv("DEVICE_PORT", "2222")
        monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))

        config = ConfigLoader(str(tmp_path / "config.yaml")).load()

        assert config.app.log_level == "DEBUG"
        assert config.device.host == "10.0.0.7"
        assert config.device.port == 2222
        assert config.state.state_dir == str(tmp_path / "state")

    def test_source_folders_from_env(self, tmp_path, monkeypatch):
        """Test adding source folders via environment variable."""
        monkeypatch.setenv("SOURCE_FOLDERS", "/mnt/i/FraMobil, /mnt/i/FraKamera")

        config = ConfigLoader(str(tmp_path / "config.yaml")).load()

        assert config.deletion.source_folders == ["/mnt/i/FraMobil", "/mnt/i/FraKamera"]

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        """Test CONFIG_PATH selects the file."""
        config_path = tmp_path / "custom.yaml"
        config_path.write_text("staging:\n  local_dir: /srv/from_device\n")
        monkeypatch.setenv("CONFIG_PATH", str(config_path))

        config = load_config()

        assert config.staging.local_dir == "/srv/from_device"

    def test_save_and_reload(self, tmp_path):
        """Test that a saved config loads back unchanged."""
        loader = ConfigLoader(str(tmp_path / "config.yaml"))
        config = loader.load()
        config.device.host = "saved.local"

        loader.save(config)
        reloaded = ConfigLoader(str(tmp_path / "config.yaml")).load()

        assert reloaded.device.host == "saved.local"

    def test_duplicate_source_folders_rejected(self):
        """Test that duplicate source folders are rejected."""
        with pytest.raises(ValueError, match="Duplicate source folders"):
            Config(deletion={"source_folders": ["/mnt/a", "/mnt/a"]})


class TestConfigSchema:
    """Test suite for configuration schema models."""

    def test_device_config_defaults(self):
        """Test DeviceConfig default values."""
        config = DeviceConfig()

        assert config.port == 8022
        assert config.exclude_folders == [".thumbnails"]
        assert config.connect_timeout == 5
        assert config.exclude_before_date is None

    def test_remote_dir_trailing_slash_stripped(self):
        """Test remote_dir normalization."""
        assert DeviceConfig(remote_dir="/sdcard/DCIM/").remote_dir == "/sdcard/DCIM"

    def test_relative_remote_dir_rejected(self):
        """Test that relative device paths are rejected."""
        with pytest.raises(ValueError):
            DeviceConfig(remote_dir="DCIM")

    def test_bad_exclude_date_rejected(self):
        """Test that malformed dates are rejected."""
        with pytest.raises(ValueError):
            DeviceConfig(exclude_before_date="01/02/2024")

    def test_relative_archive_root_rejected(self):
        """Test that relative archive roots are rejected."""
        with pytest.raises(ValueError):
            ArchiveConfig(root="relative/archive")

    def test_hash_algorithm_validation(self):
        """Test hash algorithm normalization and validation."""
        assert HashingConfig(algorithm="SHA256").algorithm == "sha256"
        with pytest.raises(ValueError):
            HashingConfig(algorithm="not-a-hash")

    def test_workers_must_be_positive(self):
        """Test that worker count must be at least one."""
        with pytest.raises(ValueError):
            HashingConfig(workers=0)

    def test_state_resolve(self, tmp_path):
        """Test state paths resolve against state_dir unless absolute."""
        state = StateConfig(state_dir=str(tmp_path))

        assert state.resolve("ledger.csv") == tmp_path / "ledger.csv"
        assert state.resolve("/var/log/x.log") == Path("/var/log/x.log")

    def test_transfer_mode_enum(self):
        """Test TransferMode enum values."""
        assert TransferMode.COPY == "copy"
        assert TransferMode.MOVE == "move"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
