"""
Cross-process sync lock.

A single lock file in the state directory. It is written to a temp file and
hard-linked into place, so at most one process holds it and readers never
see it half-written; a lock older than the timeout is treated as
abandoned and deleted.
"""

import json
import logging
import os
import socket
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from .models import LockInfo
from .state import parse_timestamp

DEFAULT_LOCK_FILE = "sync.lock"


class LockHeldError(Exception):
    """Another live owner holds the sync lock."""

    def __init__(self, message: str, owner_id: Optional[str] = None):
        self.message = message
        self.owner_id = owner_id
        super().__init__(self.message)


def make_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SyncLock:
    """
    Expiring file lock for sync attempts.

    Usage:
        lock = SyncLock(Path("data") / "sync.lock", timeout_minutes=20)
        with lock.hold():
            ...
    """

    def __init__(
        self,
        lock_path: Path,
        timeout_minutes: float = 20,
        owner_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.lock_path = Path(lock_path)
        self.timeout = timedelta(minutes=timeout_minutes)
        self.owner_id = owner_id or make_owner_id()
        self._logger = logger or logging.getLogger(__name__)

    def read(self) -> Optional[LockInfo]:
        """Current lock contents, or None when absent or unparsable."""
        try:
            raw = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            self._logger.warning(f"Could not read lock {self.lock_path}: {e}")
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None

        acquired_at = parse_timestamp(data.get("acquired_at"))
        if acquired_at is None or not data.get("owner_id"):
            return None
        return LockInfo(owner_id=str(data["owner_id"]), acquired_at=acquired_at)

    def _is_expired(self, info: LockInfo) -> bool:
        return info.age_seconds(datetime.now(timezone.utc)) > self.timeout.total_seconds()

    def _delete(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def is_sync_in_progress(self) -> bool:
        """
        True if a live lock exists.

        An expired or unparsable lock is deleted and reported as free.
        """
        if not self.lock_path.exists():
            return False

        info = self.read()
        if info is None:
            self._logger.warning(f"Removing unreadable sync lock {self.lock_path}")
            self._delete()
            return False

        if self._is_expired(info):
            age_min = info.age_seconds(datetime.now(timezone.utc)) / 60
            self._logger.warning(
                f"Removing stale sync lock held by {info.owner_id} ({age_min:.0f} min old)"
            )
            self._delete()
            return False

        return True

    def _publish(self) -> None:
        """
        Write the payload to a temp file, then hard-link it to the lock path.

        os.link fails if the lock path exists, so the lock file is created
        exclusively and never visible without its contents.

        Raises:
            FileExistsError: If another owner created the lock first
        """
        payload = {
            "owner_id": self.owner_id,
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        }
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.lock_path.parent), prefix=f".{self.lock_path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.link(tmp_path, self.lock_path)
        finally:
            os.unlink(tmp_path)

    def try_acquire(self) -> bool:
        """Create the lock file; False if a live lock already exists."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                self._publish()
            except FileExistsError:
                if self.is_sync_in_progress():
                    return False
                continue  # stale lock was removed, retry once

            self._logger.debug(f"Acquired sync lock as {self.owner_id}")
            return True
        return False

    def release(self) -> None:
        """Delete the lock file if this instance still owns it."""
        info = self.read()
        if info is None or info.owner_id != self.owner_id:
            self._logger.warning(f"Sync lock {self.lock_path} no longer owned by {self.owner_id}")
            return
        self._delete()
        self._logger.debug(f"Released sync lock {self.owner_id}")

    @contextmanager
    def hold(self) -> Iterator["SyncLock"]:
        """Hold the lock for the duration of the block, released on every exit."""
        if not self.try_acquire():
            info = self.read()
            raise LockHeldError(
                "Sync already in progress",
                owner_id=info.owner_id if info else None,
            )
        try:
            yield self
        finally:
            self.release()
