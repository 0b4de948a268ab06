"""
Shared utilities: logging, file operations and the run lock.

Author: media-ledger Project
License: MIT
"""
