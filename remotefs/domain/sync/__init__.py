"""
Sync domain - directory tree comparison and reconciliation
"""
from .models import (
    SyncDirection,
    SyncAction,
    SyncSide,
    SyncEndpoint,
    SyncOptions,
    SyncItem,
    SyncResult,
    SelectionCriteria,
)
from .comparer import compare_entries
from .service import DirectorySynchronizer

__all__ = [
    "SyncDirection",
    "SyncAction",
    "SyncSide",
    "SyncEndpoint",
    "SyncOptions",
    "SyncItem",
    "SyncResult",
    "SelectionCriteria",
    "compare_entries",
    "DirectorySynchronizer",
]
