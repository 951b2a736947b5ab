"""
RAG Vector Store Client
=======================

Durable, retried, rate-limited bridge between (doc_id, content) pairs and
the external vector index (ChromaDB over HTTP).

Features:
    - Bounded concurrency: at most N in-flight index calls
    - Exponential backoff on connection-class errors, immediate failure otherwise
    - Batched upserts with per-batch linear retry and inter-batch delay
    - MetadataStore kept in step with the index entries per document

Usage:
    store = VectorStoreClient(config, MetadataStore(Path("index")))
    await store.upsert("docs/intro.md", text)
    results = await store.search("install", k=5)
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import chromadb

from ..config import EmbeddingConfig, VectorStoreConfig
from .chunker import SemanticChunker
from .embedder import build_embedding_function
from .metadata_store import MetadataStore
from .models import Chunk, ChunkType, DocumentRecord, SearchFilters, SearchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings that mark an error as a transient network failure
TRANSIENT_MARKERS = (
    "econnrefused",
    "connection refused",
    "connection reset",
    "connection aborted",
    "failed to connect",
    "could not connect",
    "fetch failed",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "server disconnected",
)

# Substrings that mean the ids were already gone
MISSING_MARKERS = ("not found", "does not exist")


class VectorStoreError(Exception):
    """Base exception for vector index failures."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.message = message
        self.operation = operation
        super().__init__(self.message)


class VectorStoreUnavailableError(VectorStoreError):
    """Transient failures persisted through every retry."""
    pass


def is_transient_error(error: BaseException) -> bool:
    """Connection refused, timeouts and transient network failures."""
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class VectorStoreClient:
    """
    Client for the external vector index.

    Every index call goes through `_call`, which applies the concurrency
    gate, a per-call timeout and the retry policy.
    """

    def __init__(
        self,
        config: Optional[VectorStoreConfig] = None,
        metadata_store: Optional[MetadataStore] = None,
        chunker: Optional[SemanticChunker] = None,
        embedding_config: Optional[EmbeddingConfig] = None,
        embedding_function: Any = None,
        client: Any = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or VectorStoreConfig()
        self._logger = logger or logging.getLogger(__name__)
        self.metadata_store = metadata_store or MetadataStore(Path(self.config.index_dir), logger=self._logger)
        self.chunker = chunker or SemanticChunker()
        self._embedding_config = embedding_config
        self._embedding_function = embedding_function
        self._sleep = sleep

        self._client = client
        self._collection = None
        self._gate = asyncio.Semaphore(self.config.max_concurrency)
        self._connect_lock = asyncio.Lock()

        self._stats = {
            "calls": 0,
            "retries": 0,
            "errors": 0,
        }

    # =========================================================================
    # Connection
    # =========================================================================

    async def _connect(self) -> Any:
        return await chromadb.AsyncHttpClient(
            host=self.config.host,
            port=self.config.port,
            ssl=self.config.ssl,
        )

    async def _get_client(self) -> Any:
        """Lazy-initialize and return the index client."""
        if self._client is None:
            async with self._connect_lock:
                if self._client is None:
                    self._client = await self._call("connect", self._connect)
                    self._logger.info(
                        f"Vector index connection established: {self.config.host}:{self.config.port}"
                    )
        return self._client

    def _get_embedding_function(self) -> Any:
        if self._embedding_function is None:
            self._embedding_function = build_embedding_function(
                self._embedding_config or EmbeddingConfig()
            )
        return self._embedding_function

    async def _get_collection(self) -> Any:
        """Get or create the target collection."""
        if self._collection is None:
            embedding_function = self._get_embedding_function()
            client = await self._get_client()
            self._collection = await self._call(
                "get_or_create_collection",
                lambda: client.get_or_create_collection(
                    name=self.config.collection_name,
                    embedding_function=embedding_function,
                    metadata={"hnsw:space": "cosine"},
                ),
            )
        return self._collection

    async def heartbeat(self) -> bool:
        """
        Lightweight liveness probe with a short timeout and no retries.

        Returns:
            True if the index answered in time
        """
        timeout = self.config.probe_timeout
        try:
            async with self._gate:
                client = self._client
                if client is None:
                    client = await asyncio.wait_for(self._connect(), timeout=timeout)
                    self._client = client
                await asyncio.wait_for(client.heartbeat(), timeout=timeout)
            return True
        except Exception as e:
            self._logger.warning(f"Vector index liveness probe failed: {e}")
            return False

    # =========================================================================
    # Gate + retry
    # =========================================================================

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Execute one index call under the concurrency gate with retry.

        Connection-class errors are retried with exponential backoff;
        anything else fails immediately.

        Raises:
            VectorStoreUnavailableError: If every attempt hit a transient error
            VectorStoreError: On the first non-transient error
        """
        attempts = self.config.max_retries

        for attempt in range(attempts):
            try:
                async with self._gate:
                    self._stats["calls"] += 1
                    return await asyncio.wait_for(fn(), timeout=self.config.request_timeout)

            except Exception as e:
                if not is_transient_error(e):
                    self._stats["errors"] += 1
                    raise VectorStoreError(f"{operation} failed: {e}", operation=operation) from e

                if attempt >= attempts - 1:
                    self._stats["errors"] += 1
                    raise VectorStoreUnavailableError(
                        f"{operation} failed after {attempts} attempts: {e}",
                        operation=operation,
                    ) from e

                wait_time = self.config.retry_base_delay * (2 ** attempt)
                self._stats["retries"] += 1
                self._logger.warning(
                    f"Vector index {operation} error (attempt {attempt + 1}/{attempts}): {e}, "
                    f"retrying in {wait_time:.1f}s"
                )
                await self._sleep(wait_time)

        raise VectorStoreError(f"{operation} was not attempted", operation=operation)

    # =========================================================================
    # Operations
    # =========================================================================

    async def upsert(self, doc_id: str, content: str, document_type: Optional[str] = None) -> List[Chunk]:
        """
        Chunk a document and write it to the index, replacing any prior version.

        Old index entries are removed before new ones are written. A batch
        that still fails after its retries propagates; batches committed
        before it stay committed and are recorded in the MetadataStore.

        Returns:
            The chunks now indexed for the document
        """
        chunks = self.chunker.chunk(content)
        collection = await self._get_collection()

        # Another process may have written the metadata since we loaded it
        self.metadata_store.refresh()
        previous = self.metadata_store.get_chunks(doc_id)
        if previous:
            await self._delete_ids(collection, [chunk.id for chunk in previous])

        existing = self.metadata_store.get(doc_id)
        now = utc_now_iso()
        record = DocumentRecord(
            doc_id=doc_id,
            content=content,
            created_at=existing.created_at if existing else now,
            last_modified=now,
            document_type=document_type,
        )

        batch_size = self.config.batch_size
        committed: List[Chunk] = []

        for i in range(0, len(chunks), batch_size):
            batch = chunks[i:i + batch_size]
            try:
                await self._upsert_batch(collection, doc_id, batch, document_type)
            except VectorStoreError:
                self._logger.error(
                    f"Upsert of {doc_id} stopped after {len(committed)}/{len(chunks)} chunks"
                )
                self._commit(record, committed)
                raise

            committed.extend(batch)
            if i + batch_size < len(chunks):
                await self._sleep(self.config.batch_delay)

        self._commit(record, chunks)

        self._logger.info(f"Upserted {doc_id}: {len(chunks)} chunks")
        return chunks

    def _commit(self, record: DocumentRecord, chunks: List[Chunk]) -> None:
        """Merge one document into the latest on-disk metadata and persist it."""
        self.metadata_store.refresh()
        self.metadata_store.put(record, chunks)
        self.metadata_store.save()

    async def _upsert_batch(
        self,
        collection: Any,
        doc_id: str,
        batch: List[Chunk],
        document_type: Optional[str],
    ) -> None:
        """Write one batch, retrying with linearly increasing backoff."""
        ids = [chunk.id for chunk in batch]
        documents = [chunk.content for chunk in batch]
        metadatas = [self._chunk_metadata(doc_id, chunk, document_type) for chunk in batch]
        max_attempts = self.config.batch_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                await self._call(
                    "upsert",
                    lambda: collection.upsert(ids=ids, documents=documents, metadatas=metadatas),
                )
                return
            except VectorStoreError as e:
                if attempt >= max_attempts:
                    raise
                wait_time = self.config.batch_retry_delay * attempt
                self._logger.warning(
                    f"Batch upsert for {doc_id} failed (attempt {attempt}/{max_attempts}): {e}, "
                    f"retrying in {wait_time:.1f}s"
                )
                await self._sleep(wait_time)

    def _chunk_metadata(self, doc_id: str, chunk: Chunk, document_type: Optional[str]) -> Dict[str, str]:
        metadata = {"docId": doc_id, "chunkType": chunk.chunk_type.value}
        if document_type:
            metadata["documentType"] = document_type
        return metadata

    async def remove_document(self, doc_id: str) -> bool:
        """
        Delete a document's index entries and metadata.

        Returns:
            False if the document was unknown (no-op), True otherwise
        """
        self.metadata_store.refresh()
        if doc_id not in self.metadata_store:
            return False

        chunk_ids = [chunk.id for chunk in self.metadata_store.get_chunks(doc_id)]
        if chunk_ids:
            collection = await self._get_collection()
            await self._delete_ids(collection, chunk_ids)

        self.metadata_store.refresh()
        self.metadata_store.remove(doc_id)
        self.metadata_store.save()

        self._logger.info(f"Removed {doc_id} ({len(chunk_ids)} chunks)")
        return True

    async def _delete_ids(self, collection: Any, chunk_ids: List[str]) -> None:
        """Delete ids in batches. Ids already missing from the index count as deleted."""
        batch_size = self.config.batch_size
        for i in range(0, len(chunk_ids), batch_size):
            batch = chunk_ids[i:i + batch_size]
            try:
                await self._call("delete", lambda: collection.delete(ids=batch))
            except VectorStoreError as e:
                if not any(marker in e.message.lower() for marker in MISSING_MARKERS):
                    raise
                self._logger.debug(f"Ignoring delete of missing ids: {e}")

    async def search(
        self,
        query: str,
        k: int = 10,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchResult]:
        """
        Similarity search.

        Args:
            query: Search query text
            k: Maximum number of results
            filters: Optional conjunctive document_type / chunk_type filters

        Returns:
            List of SearchResult ordered by the index's relevance
        """
        if k <= 0 or not query.strip():
            return []

        collection = await self._get_collection()

        params: Dict[str, Any] = {
            "query_texts": [query],
            "n_results": k,
            "include": ["documents", "metadatas", "distances"],
        }
        where = filters.to_where() if filters else None
        if where:
            params["where"] = where

        raw = await self._call("query", lambda: collection.query(**params))
        results = self._parse_query_result(raw)

        self._logger.debug(f"Search returned {len(results)} results for query: {query[:50]}")
        return results

    def _parse_query_result(self, raw: Any) -> List[SearchResult]:
        """Validate raw index output into SearchResult objects."""
        ids = (raw.get("ids") or [[]])[0]
        documents = (raw.get("documents") or [[]])[0] or []
        metadatas = (raw.get("metadatas") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []

        results = []
        for i, chunk_id in enumerate(ids):
            metadata = metadatas[i] if i < len(metadatas) else None
            if not metadata or not metadata.get("docId"):
                self._logger.warning(f"Dropping index entry {chunk_id} without docId")
                continue
            try:
                chunk_type = ChunkType(metadata.get("chunkType", ChunkType.PARAGRAPH.value))
            except ValueError:
                self._logger.warning(f"Dropping index entry {chunk_id} with unknown chunk type")
                continue

            distance = float(distances[i]) if i < len(distances) and distances[i] is not None else 1.0
            results.append(SearchResult(
                doc_id=str(metadata["docId"]),
                chunk_id=str(chunk_id),
                content=str(documents[i] if i < len(documents) and documents[i] is not None else ""),
                chunk_type=chunk_type,
                relevance_score=max(0.0, min(1.0, 1.0 - distance)),
                distance=distance,
                document_type=metadata.get("documentType") or None,
            ))
        return results

    # =========================================================================
    # Metadata pass-through
    # =========================================================================

    def get_chunks(self, doc_id: str) -> List[Chunk]:
        self.metadata_store.refresh()
        return self.metadata_store.get_chunks(doc_id)

    def get_document(self, doc_id: str) -> Optional[DocumentRecord]:
        self.metadata_store.refresh()
        return self.metadata_store.get(doc_id)

    def document_ids(self) -> List[str]:
        self.metadata_store.refresh()
        return self.metadata_store.doc_ids()

    @property
    def stats(self) -> Dict[str, int]:
        """Index call statistics."""
        return dict(self._stats, documents=len(self.metadata_store))
