"""
Sync Data Models
================

Checkpoint, lock and per-run result structures for incremental sync.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncStatus(str, Enum):
    """Outcome of one sync attempt."""
    IN_PROGRESS = "in_progress"            # Another attempt holds the lock
    UNAVAILABLE = "unavailable"            # Vector index did not answer the probe
    NOT_NEEDED = "not_needed"              # Synced within the minimum interval
    UP_TO_DATE = "up_to_date"              # Latest revision already processed
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"    # Some files failed, checkpoint kept
    FAILED = "failed"


STATUS_MESSAGES = {
    SyncStatus.IN_PROGRESS: "Sync in progress",
    SyncStatus.UNAVAILABLE: "Vector store unavailable, sync skipped",
    SyncStatus.NOT_NEEDED: "No sync needed",
    SyncStatus.UP_TO_DATE: "No new revision, nothing to sync",
    SyncStatus.COMPLETED: "Sync successful",
    SyncStatus.PARTIAL_FAILURE: "Sync completed with errors",
    SyncStatus.FAILED: "Sync failed",
}


@dataclass
class SyncCheckpoint:
    """Last revision of a source fully reflected in the index."""
    source_id: str
    last_processed_revision: Optional[str]
    timestamp: Optional[str] = None
    last_sync_at: Optional[str] = None
    attempted_revision: Optional[str] = None
    failed_files: List[str] = field(default_factory=list)


@dataclass
class LockInfo:
    """Contents of the sync lock file."""
    owner_id: str
    acquired_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.acquired_at).total_seconds()


@dataclass
class SyncResult:
    """Result of a single sync attempt."""
    source_id: str
    branch: str
    started_at: datetime
    status: Optional[SyncStatus] = None
    completed_at: Optional[datetime] = None
    revision: Optional[str] = None
    previous_revision: Optional[str] = None

    files_ingested: List[str] = field(default_factory=list)
    files_removed: List[str] = field(default_factory=list)
    files_skipped: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def failed_files(self) -> List[str]:
        return [error["path"] for error in self.errors if error.get("path")]

    @property
    def message(self) -> str:
        text = STATUS_MESSAGES.get(self.status, "Sync not started")
        if self.status == SyncStatus.PARTIAL_FAILURE:
            text = f"{text} ({len(self.errors)} files failed)"
        return text

    def add_error(self, path: Optional[str], error_type: str, message: str):
        """Record an error."""
        self.errors.append({
            "path": path,
            "error_type": error_type,
            "message": message,
        })

    def get_summary(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "branch": self.branch,
            "status": self.status.value if self.status else None,
            "message": self.message,
            "revision": self.revision,
            "previous_revision": self.previous_revision,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "ingested": len(self.files_ingested),
            "removed": len(self.files_removed),
            "skipped": len(self.files_skipped),
            "errors": self.errors,
        }
