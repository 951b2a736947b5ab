"""
Docsync Sync Coordinator
========================

Keeps the vector index in step with tracked document repositories.

Flow per source:
    1. Skip if another attempt holds the sync lock
    2. Skip if the vector index fails its liveness probe
    3. Skip if the source was synced within the minimum interval
    4. Acquire the lock (released on every exit path)
    5. Resolve the latest revision and diff it against the checkpoint,
       or list the whole tree on first sync
    6. Remove deleted files, ingest changed files with an allowed extension
    7. Advance the checkpoint only if every file succeeded

Per-file failures are collected in the SyncResult and never abort the
batch. Errors outside a single file are recorded against the source and
propagate to the caller.

Usage:
    coordinator = SyncCoordinator(vector_store, GitHubSource(config), config)
    result = await coordinator.sync("https://github.com/org/docs")
    print(result.message)
"""

import asyncio
import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..config import ConfigurationError, SyncConfig
from ..rag.metadata_store import read_json
from ..rag.vector_store import VectorStoreClient, VectorStoreError
from ..sources.base import FileChanges, RepositorySource, TextExtractor
from ..sources.pdf_extractor import PdfTextExtractor
from .lock import DEFAULT_LOCK_FILE, LockHeldError, SyncLock
from .models import SyncResult, SyncStatus
from .state import SyncState

UPLOAD_SOURCE_ID = "uploads"

DOCUMENT_TYPES = {
    ".md": "markdown",
    ".mdx": "markdown",
    ".txt": "text",
    ".rst": "restructuredtext",
    ".pdf": "pdf",
}


class InvalidUploadError(ValueError):
    """Uploaded file rejected before ingestion."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def file_extension(path: str) -> str:
    return os.path.splitext(path)[1].lower()


def decode_text(data: bytes) -> str:
    """Decode as UTF-8, falling back to latin-1 for legacy files."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """
    Orchestrates incremental ingestion from repository sources.

    Collaborators are injected so tests can substitute fakes.
    """

    def __init__(
        self,
        vector_store: VectorStoreClient,
        source: RepositorySource,
        config: Optional[SyncConfig] = None,
        state: Optional[SyncState] = None,
        lock: Optional[SyncLock] = None,
        extractor: Optional[TextExtractor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or SyncConfig()
        self.vector_store = vector_store
        self.source = source
        self._logger = logger or logging.getLogger(__name__)

        state_dir = Path(self.config.state_dir)
        self.state = state or SyncState(state_dir, logger=self._logger)
        self.lock = lock or SyncLock(
            state_dir / DEFAULT_LOCK_FILE,
            timeout_minutes=self.config.lock_timeout_minutes,
            logger=self._logger,
        )
        self.extractor = extractor or PdfTextExtractor()

    def is_allowed(self, path: str) -> bool:
        return file_extension(path) in self.config.allowed_extensions

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync(self, source_url: str, branch: Optional[str] = None) -> SyncResult:
        """
        Run one sync attempt for a source.

        Returns:
            SyncResult; its status says whether anything ran
        """
        branch = branch or self.config.default_branch
        result = SyncResult(source_id=source_url, branch=branch, started_at=utc_now())

        if self.lock.is_sync_in_progress():
            self._logger.info(f"Sync of {source_url} skipped: another sync holds the lock")
            return self._finish(result, SyncStatus.IN_PROGRESS)

        if not await self.vector_store.heartbeat():
            self._logger.warning(f"Sync of {source_url} skipped: vector index unavailable")
            return self._finish(result, SyncStatus.UNAVAILABLE)

        self.state.reload()
        if not self.state.is_sync_due(source_url, self.config.min_interval_hours):
            return self._finish(result, SyncStatus.NOT_NEEDED)

        try:
            with self.lock.hold():
                # Another process may have finished a sync while we probed
                self.state.reload()
                await self._run(source_url, branch, result)
        except LockHeldError:
            return self._finish(result, SyncStatus.IN_PROGRESS)
        except Exception as e:
            self._logger.error(f"Sync of {source_url} failed: {e}")
            self.state.record_failure(source_url, str(e))
            result.add_error(None, type(e).__name__, str(e))
            self._finish(result, SyncStatus.FAILED)
            raise

        return result

    async def _run(self, source_url: str, branch: str, result: SyncResult) -> None:
        latest = await asyncio.to_thread(self.source.get_latest_revision, source_url, branch)
        result.revision = latest

        checkpoint = self.state.get_checkpoint(source_url)
        previous = checkpoint.last_processed_revision if checkpoint else None
        result.previous_revision = previous

        if previous == latest:
            self._logger.info(f"{source_url} already at {latest[:8]}, nothing to sync")
            self.state.record_checked(source_url)
            self._finish(result, SyncStatus.UP_TO_DATE)
            return

        if previous:
            changes = await asyncio.to_thread(self.source.diff, source_url, previous, latest)
            self._logger.info(
                f"{source_url} {previous[:8]}..{latest[:8]}: "
                f"{len(changes.changed)} changed, {len(changes.removed)} removed"
            )
        else:
            files = await asyncio.to_thread(self.source.list_files, source_url, latest)
            changes = FileChanges(changed=files)
            self._logger.info(f"First sync of {source_url}: {len(files)} files at {latest[:8]}")

        await self._apply_removals(changes.removed, result)
        await self._apply_changes(source_url, latest, changes.changed, result)

        status = SyncStatus.PARTIAL_FAILURE if result.errors else SyncStatus.COMPLETED
        self.state.record_sync(
            source_url,
            revision=latest,
            failed_files=result.failed_files,
            status=status.value,
        )
        self._finish(result, status)

    async def _apply_removals(self, paths: List[str], result: SyncResult) -> None:
        # Removed paths are deleted regardless of extension
        for path in paths:
            try:
                if await self.vector_store.remove_document(path):
                    result.files_removed.append(path)
            except VectorStoreError as e:
                self._logger.error(f"Failed to remove {path}: {e}")
                result.add_error(path, type(e).__name__, str(e))

    async def _apply_changes(self, source_url: str, revision: str, paths: List[str], result: SyncResult) -> None:
        for path in paths:
            if not self.is_allowed(path):
                result.files_skipped.append(path)
                continue

            try:
                data = await asyncio.to_thread(self.source.fetch_raw, source_url, revision, path)
                text = await self._extract_text(path, data)
                if not text.strip():
                    self._logger.warning(f"No extractable text in {path}, skipping")
                    result.files_skipped.append(path)
                    continue
                await self.vector_store.upsert(path, text, document_type=DOCUMENT_TYPES.get(file_extension(path)))
                result.files_ingested.append(path)
            except Exception as e:
                self._logger.error(f"Failed to ingest {path}: {e}")
                result.add_error(path, type(e).__name__, str(e))

    async def _extract_text(self, path: str, data: bytes) -> str:
        if file_extension(path) == ".pdf":
            return await asyncio.to_thread(self.extractor.extract, data)
        return decode_text(data)

    def _finish(self, result: SyncResult, status: SyncStatus) -> SyncResult:
        result.status = status
        result.completed_at = utc_now()
        self._logger.info(
            f"Sync {result.source_id}: {status.value}",
            extra={
                "source": result.source_id,
                "revision": result.revision,
                "status": status.value,
                "duration": result.duration_seconds,
            },
        )
        return result

    # =========================================================================
    # Multi-source
    # =========================================================================

    def load_sources(self) -> List[str]:
        """Read the tracked source URLs from the sources file."""
        path = Path(self.config.state_dir) / self.config.sources_file
        data = read_json(path, self._logger)
        if data is None:
            self._logger.warning(f"No sources file at {path}")
            return []
        if not isinstance(data, list) or not all(isinstance(url, str) for url in data):
            raise ConfigurationError(f"{path} must contain a JSON list of repository URLs")
        return data

    async def sync_all(self, branch: Optional[str] = None) -> List[SyncResult]:
        """
        Sync every tracked source in turn.

        A failing source is recorded as FAILED and does not stop the rest.
        """
        results = []
        for source_url in self.load_sources():
            try:
                results.append(await self.sync(source_url, branch))
            except Exception as e:
                failed = SyncResult(
                    source_id=source_url,
                    branch=branch or self.config.default_branch,
                    started_at=utc_now(),
                )
                failed.add_error(None, type(e).__name__, str(e))
                results.append(self._finish(failed, SyncStatus.FAILED))

        completed = sum(1 for r in results if r.status == SyncStatus.COMPLETED)
        self._logger.info(f"Synced {completed}/{len(results)} sources")
        return results

    # =========================================================================
    # Uploads
    # =========================================================================

    async def ingest_upload(self, file_bytes: bytes, filename: str) -> str:
        """
        Ingest a single uploaded document under its filename.

        Raises:
            InvalidUploadError: Empty payload, bad name or disallowed extension
        """
        name = os.path.basename(filename or "").strip()
        if not name:
            raise InvalidUploadError("Filename is required")
        if not file_bytes:
            raise InvalidUploadError(f"{name} is empty")
        if not self.is_allowed(name):
            allowed = ", ".join(sorted(self.config.allowed_extensions))
            raise InvalidUploadError(f"{name}: unsupported file type (allowed: {allowed})")

        text = await self._extract_text(name, file_bytes)
        if not text.strip():
            self._logger.warning(f"Upload {name} has no extractable text")
            return f"No text could be extracted from {name}"

        chunks = await self.vector_store.upsert(name, text, document_type=DOCUMENT_TYPES.get(file_extension(name)))

        self.state.reload()
        self.state.record_sync(
            UPLOAD_SOURCE_ID,
            revision=hashlib.sha256(file_bytes).hexdigest()[:16],
            status=SyncStatus.COMPLETED.value,
        )
        return f"Ingested {name} ({len(chunks)} chunks)"
