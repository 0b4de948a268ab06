"""
Provenance Module

Digest caching, scanning, the provenance ledger and the safe-delete
decision procedure.

Author: media-ledger Project
License: MIT
"""

from .digest_store import ContentDigestStore, DigestRecord, FileIdentityKey
from .scanner import PopulationScanner, ScanReport, SourceInventoryEntry
from .copy_tracker import CopyMoveTracker, CopyRecord
from .ledger import LedgerEntry, LedgerSnapshot, ProvenanceLedger
from .resolver import Resolution, SafeDeleteResolver, partition

__all__ = [
    'ContentDigestStore',
    'DigestRecord',
    'FileIdentityKey',
    'PopulationScanner',
    'ScanReport',
    'SourceInventoryEntry',
    'CopyMoveTracker',
    'CopyRecord',
    'LedgerEntry',
    'LedgerSnapshot',
    'ProvenanceLedger',
    'Resolution',
    'SafeDeleteResolver',
    'partition',
]
