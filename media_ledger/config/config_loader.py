"""
Configuration Loader

Handles loading, parsing, and merging configuration from YAML files and
environment variables.

Author: media-ledger Project
License: MIT
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any
from dotenv import load_dotenv

from .schema import Config


DEFAULT_CONFIG_PATH = "~/.config/media-ledger/config.yaml"

# VARIABLE -> (section, key, conversion)
ENV_OVERRIDES = {
    "APP_LOG_LEVEL": ("app", "log_level", str.upper),
    "APP_LOG_JSON": ("app", "json_format", lambda v: v.lower() == "true"),
    "DEVICE_HOST": ("device", "host", str),
    "DEVICE_PORT": ("device", "port", int),
    "DEVICE_USER": ("device", "user", str),
    "DEVICE_SSH_KEY": ("device", "ssh_key", str),
    "DEVICE_REMOTE_DIR": ("device", "remote_dir", str),
    "STAGING_DIR": ("staging", "local_dir", str),
    "ARCHIVE_ROOT": ("archive", "root", str),
    "STATE_DIR": ("state", "state_dir", str),
}


class ConfigLoader:
    """
    Configuration loader and manager.

    Loads configuration from YAML file, merges with environment variables
    and validates the structure.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the configuration file. If None, uses default location.
        """
        # Load environment variables from .env if present
        load_dotenv()

        self.config_path = str(Path(
            config_path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
        ).expanduser())
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """
        Load and validate configuration.

        Returns:
            Validated Config object

        Raises:
            ValueError: If YAML parsing or configuration validation fails
        """
        config_data = self._load_yaml()
        config_data = self._merge_env_vars(config_data)

        self._config = Config(**config_data)
        return self._config

    def _load_yaml(self) -> Dict[str, Any]:
        """
        Load YAML configuration file.

        Returns:
            Dictionary with configuration data
        """
        config_file = Path(self.config_path)

        if not config_file.exists():
            return self._create_default_config()

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse YAML config: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {config_file}")
        return data

    def _create_default_config(self) -> Dict[str, Any]:
        """
        Create default configuration structure.

        Returns:
            Default configuration dictionary
        """
        return {
            "app": {
                "log_level": "INFO",
                "log_to_file": True
            },
            "device": {
                "port": 8022,
                "remote_dir": "/storage/emulated/0/DCIM",
                "exclude_folders": [".thumbnails"],
                "connect_timeout": 5
            },
            "staging": {
                "local_dir": "/mnt/media/from_device"
            },
            "archive": {
                "root": "/mnt/media/imported_to_lightroom"
            },
            "hashing": {
                "algorithm": "sha1",
                "follow_symlinks": False,
                "workers": 1
            },
            "state": {
                "state_dir": "~/.local/share/media-ledger"
            },
            "deletion": {
                "source_folders": [],
                "preview_limit": 20
            }
        }

    def _merge_env_vars(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment overrides on top of the file values.

        Variables are named SECTION_KEY (DEVICE_HOST, APP_LOG_LEVEL, ...);
        see ENV_OVERRIDES. SOURCE_FOLDERS is a comma-separated list that is
        appended to the configured source folders.

        Args:
            config_data: Configuration dictionary from file

        Returns:
            Merged configuration dictionary
        """
        for variable, (section, key, convert) in ENV_OVERRIDES.items():
            value = os.getenv(variable)
            if value:
                config_data.setdefault(section, {})[key] = convert(value)

        if os.getenv("SOURCE_FOLDERS"):
            folders = config_data.setdefault("deletion", {}).setdefault("source_folders", [])
            for folder in os.getenv("SOURCE_FOLDERS").split(","):
                folder = folder.strip()
                if folder and folder not in folders:
                    folders.append(folder)

        return config_data

    def save(self, config: Config, path: Optional[str] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            config: Config object to save
            path: Path to save to (uses default if None)
        """
        save_path = Path(path or self.config_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config.dict(), f, default_flow_style=False, sort_keys=False)

    @property
    def config(self) -> Optional[Config]:
        """Get the current configuration object."""
        return self._config


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Convenience function to load configuration.

    Args:
        config_path: Optional path to config file

    Returns:
        Loaded and validated Config object
    """
    loader = ConfigLoader(config_path)
    return loader.load()
