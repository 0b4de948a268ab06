"""
media-ledger Configuration Module

Handles configuration loading, validation and environment variable
overrides for the device sync and provenance tooling.

Author: media-ledger Project
License: MIT
"""

from .schema import Config, TransferMode
from .config_loader import ConfigLoader, load_config

__all__ = ['Config', 'TransferMode', 'ConfigLoader', 'load_config']
