"""
Docsync Service
===============

Facade exposing the upward interface used by the chat assistant:

    retrieve(query, **options)         -> {"context", "source_files"}
    ingest_upload(file_bytes, name)    -> status message
    sync(source_url, branch)           -> status message
    sync_all(branch)                   -> {source_url: status message}

Usage:
    assistant = DocsAssistant.from_settings(load_settings())
    payload = await assistant.retrieve("how do I configure auth?", max_results=3)
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ConfigurationError, Settings, load_settings
from .rag.embedder import build_embedding_function
from .rag.metadata_store import MetadataStore
from .rag.retriever import RetrievalEngine
from .rag.vector_store import VectorStoreClient, VectorStoreError
from .sources.base import SourceError
from .sources.github_client import GitHubSource
from .sync.coordinator import SyncCoordinator
from .sync.models import STATUS_MESSAGES, SyncStatus

logger = logging.getLogger(__name__)


class DocsAssistant:
    """Wires retrieval, ingestion and sync behind one object."""

    def __init__(
        self,
        vector_store: VectorStoreClient,
        retriever: RetrievalEngine,
        coordinator: SyncCoordinator,
    ):
        self.vector_store = vector_store
        self.retriever = retriever
        self.coordinator = coordinator

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DocsAssistant":
        """
        Build all components from configuration.

        Raises:
            ConfigurationError: If a required credential is missing
        """
        settings = settings or load_settings()

        metadata_store = MetadataStore(Path(settings.vector_store.index_dir))
        vector_store = VectorStoreClient(
            config=settings.vector_store,
            metadata_store=metadata_store,
            embedding_function=build_embedding_function(settings.embedding),
        )
        coordinator = SyncCoordinator(
            vector_store=vector_store,
            source=GitHubSource(settings.sync),
            config=settings.sync,
        )
        return cls(vector_store, RetrievalEngine(vector_store), coordinator)

    async def retrieve(self, query: str, **options: Any) -> Dict[str, str]:
        """
        Retrieve context for a query.

        Raises:
            InvalidQueryError: Empty query or invalid options
            RetrievalError: Vector index failure
        """
        result = await self.retriever.run(query, options or None)
        return result.to_dict()

    async def ingest_upload(self, file_bytes: bytes, filename: str) -> str:
        """
        Ingest an uploaded file.

        Raises:
            InvalidUploadError: Rejected payload
            VectorStoreError: Index write failed
        """
        return await self.coordinator.ingest_upload(file_bytes, filename)

    async def sync(self, source_url: str, branch: str = "main") -> str:
        """Run one sync and return its status message. Never raises."""
        try:
            result = await self.coordinator.sync(source_url, branch)
        except (SourceError, VectorStoreError, ConfigurationError) as e:
            logger.error(f"Sync of {source_url} failed: {e}")
            return STATUS_MESSAGES[SyncStatus.FAILED]
        except Exception:
            logger.exception(f"Unexpected error while syncing {source_url}")
            return STATUS_MESSAGES[SyncStatus.FAILED]
        return result.message

    async def sync_all(self, branch: str = "main") -> Dict[str, str]:
        """Sync every tracked source and map each to its status message."""
        try:
            results = await self.coordinator.sync_all(branch)
        except ConfigurationError as e:
            logger.error(f"Could not load tracked sources: {e}")
            return {}
        return {result.source_id: result.message for result in results}
