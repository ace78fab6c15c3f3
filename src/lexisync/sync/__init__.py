"""
Synchronization components for lexisync.

This package provides the three-way merge, lineage resolution and the sync
orchestrator that drives them.
"""

from .merge import (
    merge,
    apply_resolutions,
    MergeResult,
    MergeStatistics,
    ConflictEntry,
    ConflictOutcome,
    ConflictResolution,
)
from .lineage import LineageResolver, fork
from .context import SyncContext
from .dispatch import Dispatcher, ImmediateDispatcher, LoopDispatcher
from .orchestrator import (
    SyncOrchestrator,
    SyncState,
    SyncDirective,
    decide_directive,
    OperationResult,
    CheckOutcome,
)

__all__ = [
    'merge',
    'apply_resolutions',
    'MergeResult',
    'MergeStatistics',
    'ConflictEntry',
    'ConflictOutcome',
    'ConflictResolution',
    'LineageResolver',
    'fork',
    'SyncContext',
    'Dispatcher',
    'ImmediateDispatcher',
    'LoopDispatcher',
    'SyncOrchestrator',
    'SyncState',
    'SyncDirective',
    'decide_directive',
    'OperationResult',
    'CheckOutcome',
]
