"""
media-ledger

Device-to-archive media sync with a content-hash provenance ledger and
safe deletion of files that have already reached the archive.

Author: media-ledger Project
License: MIT
"""

__version__ = "0.1.0"
