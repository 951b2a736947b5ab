"""
Docsync Sync State Persistence
==============================

Persists per-source checkpoints to disk so incremental sync survives
process restarts.

On restart the coordinator can:
- Know when each source was last synced
- Diff from the last revision fully reflected in the index
- See which files failed on the last attempt

State file format: JSON at SYNC_STATE_DIR/sync_state.json

Usage:
    state = SyncState(Path("data"))
    if state.is_sync_due(url, min_interval_hours=24):
        ...
    state.record_sync(url, revision="abc123", failed_files=[])
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..rag.metadata_store import read_json, write_json_atomic
from .models import SyncCheckpoint

DEFAULT_STATE_FILE = "sync_state.json"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncState:
    """
    Persistent checkpoints for tracked sources.

    The revision checkpoint only moves when a sync processed every changed
    file; `last_sync_at` moves on every completed attempt.
    """

    def __init__(self, state_dir: Path, logger: Optional[logging.Logger] = None):
        self._state_dir = Path(state_dir)
        self._state_file = self._state_dir / DEFAULT_STATE_FILE
        self._logger = logger or logging.getLogger(__name__)
        self._state: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load state from disk; unreadable state starts fresh."""
        data = read_json(self._state_file, self._logger)
        if isinstance(data, dict) and isinstance(data.get("sources"), dict):
            return data
        if data is not None:
            self._logger.warning(f"Ignoring malformed sync state in {self._state_file}")
        return {"version": 1, "sources": {}}

    def reload(self) -> None:
        """Re-read state written by another process."""
        self._state = self._load()

    def save(self) -> None:
        """Persist state to disk."""
        write_json_atomic(self._state_file, self._state)

    def _source(self, source_id: str) -> Dict[str, Any]:
        return self._state["sources"].setdefault(source_id, {})

    # =========================================================================
    # Queries
    # =========================================================================

    def get_checkpoint(self, source_id: str) -> Optional[SyncCheckpoint]:
        entry = self._state["sources"].get(source_id)
        if not isinstance(entry, dict):
            return None
        return SyncCheckpoint(
            source_id=source_id,
            last_processed_revision=entry.get("last_processed_revision"),
            timestamp=entry.get("timestamp"),
            last_sync_at=entry.get("last_sync_at"),
            attempted_revision=entry.get("attempted_revision"),
            failed_files=list(entry.get("failed_files") or []),
        )

    def last_sync_at(self, source_id: str) -> Optional[datetime]:
        entry = self._state["sources"].get(source_id) or {}
        return parse_timestamp(entry.get("last_sync_at"))

    def is_sync_due(self, source_id: str, min_interval_hours: float, now: Optional[datetime] = None) -> bool:
        """
        True unless the source was synced less than min_interval_hours ago.

        An unparsable timestamp counts as never synced.
        """
        last = self.last_sync_at(source_id)
        if last is None:
            return True

        now = now or datetime.now(timezone.utc)
        age_hours = (now - last).total_seconds() / 3600
        if age_hours < min_interval_hours:
            self._logger.info(
                f"Last sync of {source_id} was {age_hours:.1f}h ago, below {min_interval_hours}h"
            )
            return False
        return True

    # =========================================================================
    # Updates
    # =========================================================================

    def record_sync(
        self,
        source_id: str,
        revision: Optional[str],
        failed_files: Optional[List[str]] = None,
        status: Optional[str] = None,
    ) -> None:
        """
        Record a completed sync attempt.

        The revision checkpoint advances only when no file failed.
        """
        now = datetime.now(timezone.utc).isoformat()
        entry = self._source(source_id)
        failed_files = sorted(set(failed_files or []))

        entry["last_sync_at"] = now
        entry["attempted_revision"] = revision
        entry["failed_files"] = failed_files
        if status:
            entry["last_status"] = status

        if revision and not failed_files:
            entry["last_processed_revision"] = revision
            entry["timestamp"] = now
        elif failed_files:
            self._logger.warning(
                f"Checkpoint for {source_id} kept at "
                f"{entry.get('last_processed_revision')}: {len(failed_files)} files failed"
            )

        self.save()

    def record_checked(self, source_id: str) -> None:
        """Record a sync that found nothing to do."""
        entry = self._source(source_id)
        entry["last_sync_at"] = datetime.now(timezone.utc).isoformat()
        entry["last_status"] = "up_to_date"
        self.save()

    def record_failure(self, source_id: str, error: str) -> None:
        """Record an attempt that aborted. The last-sync time is not moved."""
        entry = self._source(source_id)
        entry["last_status"] = "failed"
        entry["last_error"] = error
        entry["last_failure_at"] = datetime.now(timezone.utc).isoformat()
        self.save()

    def get_summary(self) -> Dict[str, Any]:
        """Get a human-readable state summary."""
        return {
            source_id: {
                "last_processed_revision": entry.get("last_processed_revision"),
                "last_sync_at": entry.get("last_sync_at"),
                "last_status": entry.get("last_status"),
                "failed_files": len(entry.get("failed_files") or []),
            }
            for source_id, entry in self._state["sources"].items()
        }
