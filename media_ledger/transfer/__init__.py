"""
Transfer Module

Device access over SSH and bulk transfer with rsync.

Author: media-ledger Project
License: MIT
"""

from .remote_device import DateFilter, RemoteDevice, RemoteFile
from .mirror import RsyncMirror, TransferResult

__all__ = [
    'DateFilter',
    'RemoteDevice',
    'RemoteFile',
    'RsyncMirror',
    'TransferResult',
]
