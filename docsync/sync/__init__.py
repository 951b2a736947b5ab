"""
Docsync Sync Module
===================

Incremental, lock-guarded synchronization of repository documents into the
vector index.
"""

from .coordinator import InvalidUploadError, SyncCoordinator
from .lock import LockHeldError, SyncLock
from .models import LockInfo, SyncCheckpoint, SyncResult, SyncStatus
from .state import SyncState

__all__ = [
    "SyncCoordinator",
    "InvalidUploadError",
    "SyncLock",
    "LockHeldError",
    "SyncState",
    "LockInfo",
    "SyncCheckpoint",
    "SyncResult",
    "SyncStatus",
]
