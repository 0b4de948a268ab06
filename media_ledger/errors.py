"""
Error Taxonomy

Exceptions raised across media-ledger. Per-file errors are caught and
reported at the file level; precondition and transport errors abort the
operation they belong to.

Author: media-ledger Project
License: MIT
"""

from typing import List, Optional


class MediaLedgerError(Exception):
    """Base class for all media-ledger errors."""


class FileUnreadableError(MediaLedgerError):
    """A file vanished or could not be read while hashing or deleting."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read {path}: {reason}")


class PreconditionMissingError(MediaLedgerError):
    """Required state (ledger, cache, lock) is absent; the operation fails closed."""


class TransportUnavailableError(MediaLedgerError):
    """The remote device or the transfer tool cannot be reached.

    ``transferred`` lists files that arrived before the failure.
    """

    def __init__(self, message: str, transferred: Optional[List[str]] = None):
        self.transferred = list(transferred or [])
        super().__init__(message)


class UserDeclinedError(MediaLedgerError):
    """The user refused a confirmation prompt."""


class MalformedRecordError(MediaLedgerError):
    """A persisted record could not be parsed."""

    def __init__(self, source: str, line_number: int, detail: str, raw: Optional[str] = None):
        self.source = source
        self.line_number = line_number
        self.detail = detail
        self.raw = raw
        super().__init__(f"{source}:{line_number}: {detail}")
