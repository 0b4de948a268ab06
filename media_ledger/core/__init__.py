"""
media-ledger Core Module

Deletion execution, run logs and the refresh / sync / resolve-and-delete
workflows.

Author: media-ledger Project
License: MIT
"""

from .deleter import Deleter, DeletionOutcome, DeletionReport, DeletionStatus
from .run_log import RunSummaryLog, SyncWatermarks, TransferLog
from .workflows import (
    SyncPlan,
    WorkflowContext,
    compact_copy_log,
    refresh_ledger,
    resolve_and_delete,
    sync_device,
)

__all__ = [
    'Deleter',
    'DeletionOutcome',
    'DeletionReport',
    'DeletionStatus',
    'RunSummaryLog',
    'SyncWatermarks',
    'TransferLog',
    'SyncPlan',
    'WorkflowContext',
    'compact_copy_log',
    'refresh_ledger',
    'resolve_and_delete',
    'sync_device',
]
