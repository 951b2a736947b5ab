"""
Tests for the docsync service facade.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from docsync.config import (
    ConfigurationError,
    EmbeddingConfig,
    Settings,
    SyncConfig,
    VectorStoreConfig,
)
from docsync.rag.models import RetrievalResult
from docsync.rag.retriever import InvalidQueryError
from docsync.service import DocsAssistant
from docsync.sources.base import SourceError
from docsync.sync.models import SyncResult, SyncStatus


def make_assistant():
    retriever = Mock()
    retriever.run = AsyncMock(return_value=RetrievalResult(
        context="[File: a.md]\nbody", source_files="a.md", results=[],
    ))
    coordinator = Mock()
    coordinator.sync = AsyncMock()
    coordinator.sync_all = AsyncMock(return_value=[])
    coordinator.ingest_upload = AsyncMock(return_value="Ingested a.md (1 chunks)")
    return DocsAssistant(Mock(), retriever, coordinator), retriever, coordinator


def finished(status, source_id="https://github.com/org/docs"):
    result = SyncResult(source_id=source_id, branch="main", started_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    result.status = status
    return result


class TestRetrieve:
    """Tests for the retrieval entry point."""

    def test_returns_payload(self):
        assistant, retriever, _ = make_assistant()

        payload = asyncio.run(assistant.retrieve("install", max_results=3))

        assert payload == {"context": "[File: a.md]\nbody", "source_files": "a.md"}
        retriever.run.assert_awaited_once_with("install", {"max_results": 3})

    def test_default_options(self):
        assistant, retriever, _ = make_assistant()
        asyncio.run(assistant.retrieve("install"))
        retriever.run.assert_awaited_once_with("install", None)

    def test_invalid_query_propagates(self):
        assistant, retriever, _ = make_assistant()
        retriever.run.side_effect = InvalidQueryError("Query must be a non-empty string")

        with pytest.raises(InvalidQueryError):
            asyncio.run(assistant.retrieve(""))


class TestSync:
    """Tests for sync status messages."""

    def test_success_message(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync.return_value = finished(SyncStatus.COMPLETED)

        assert asyncio.run(assistant.sync("https://github.com/org/docs")) == "Sync successful"
        coordinator.sync.assert_awaited_once_with("https://github.com/org/docs", "main")

    def test_skip_message(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync.return_value = finished(SyncStatus.NOT_NEEDED)

        assert asyncio.run(assistant.sync("https://github.com/org/docs")) == "No sync needed"

    def test_failure_never_raises(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync.side_effect = SourceError("GET returned 500", status_code=500)

        assert asyncio.run(assistant.sync("https://github.com/org/docs")) == "Sync failed"

    def test_unexpected_error_never_raises(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync.side_effect = ValueError("bad xref table")

        assert asyncio.run(assistant.sync("https://github.com/org/docs")) == "Sync failed"

    def test_sync_all_maps_sources(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync_all.return_value = [
            finished(SyncStatus.COMPLETED, "https://github.com/org/a"),
            finished(SyncStatus.FAILED, "https://github.com/org/b"),
        ]

        assert asyncio.run(assistant.sync_all()) == {
            "https://github.com/org/a": "Sync successful",
            "https://github.com/org/b": "Sync failed",
        }

    def test_sync_all_bad_sources_file(self):
        assistant, _, coordinator = make_assistant()
        coordinator.sync_all.side_effect = ConfigurationError("repo_urls.json must contain a JSON list")

        assert asyncio.run(assistant.sync_all()) == {}

    def test_upload_delegates(self):
        assistant, _, coordinator = make_assistant()

        message = asyncio.run(assistant.ingest_upload(b"# A", "a.md"))

        assert message == "Ingested a.md (1 chunks)"
        coordinator.ingest_upload.assert_awaited_once_with(b"# A", "a.md")


class TestFromSettings:
    """Tests for wiring from configuration."""

    def _settings(self, tmp_path, api_key):
        return Settings(
            vector_store=VectorStoreConfig(index_dir=str(tmp_path / "index")),
            embedding=EmbeddingConfig(api_key=api_key, model="text-embedding-3-small"),
            sync=SyncConfig(state_dir=str(tmp_path / "state")),
        )

    def test_missing_api_key(self, tmp_path):
        with pytest.raises(ConfigurationError):
            DocsAssistant.from_settings(self._settings(tmp_path, api_key=None))

    @patch("docsync.service.build_embedding_function")
    def test_wires_components(self, mock_build, tmp_path):
        assistant = DocsAssistant.from_settings(self._settings(tmp_path, api_key="sk-test"))

        mock_build.assert_called_once()
        assert assistant.retriever.vector_store is assistant.vector_store
        assert assistant.coordinator.vector_store is assistant.vector_store
        assert str(assistant.coordinator.state._state_dir) == str(tmp_path / "state")
