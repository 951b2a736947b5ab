"""
Shared fixtures for docsync tests.

In-memory fakes stand in for the ChromaDB HTTP client and the remote
repository, so no test touches the network.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional

import pytest

from docsync.config import SyncConfig, VectorStoreConfig
from docsync.rag.metadata_store import MetadataStore
from docsync.rag.vector_store import VectorStoreClient
from docsync.sources.base import FileChanges, RepositorySource, SourceError

WORD = re.compile(r"\w+")


def _matches(metadata: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    if not where:
        return True
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class FakeCollection:
    """Async stand-in for a Chroma collection with word-overlap scoring."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.scripts: Dict[str, List[Optional[Exception]]] = {}
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, operation: str, outcomes: List[Optional[Exception]]):
        """Queue outcomes for the next calls: None succeeds, an exception is raised."""
        self.scripts[operation] = list(outcomes)

    async def _enter(self, operation: str, payload: Any):
        self.calls.append((operation, payload))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            queue = self.scripts.get(operation)
            if queue:
                outcome = queue.pop(0)
                if outcome is not None:
                    raise outcome
        finally:
            self.in_flight -= 1

    async def upsert(self, ids, documents, metadatas):
        await self._enter("upsert", list(ids))
        for chunk_id, document, metadata in zip(ids, documents, metadatas):
            self.entries[chunk_id] = {"document": document, "metadata": dict(metadata)}

    async def delete(self, ids):
        await self._enter("delete", list(ids))
        for chunk_id in ids:
            self.entries.pop(chunk_id, None)

    async def query(self, query_texts, n_results, include=None, where=None):
        await self._enter("query", {"query_texts": query_texts, "n_results": n_results, "where": where})
        terms = set(WORD.findall(query_texts[0].lower()))

        scored = []
        for chunk_id, entry in self.entries.items():
            if not _matches(entry["metadata"], where):
                continue
            words = set(WORD.findall(entry["document"].lower()))
            overlap = len(terms & words) / len(terms) if terms else 0.0
            scored.append((1.0 - overlap, chunk_id, entry))
        scored.sort(key=lambda item: (item[0], item[1]))
        scored = scored[:n_results]

        return {
            "ids": [[chunk_id for _, chunk_id, _ in scored]],
            "documents": [[entry["document"] for _, _, entry in scored]],
            "metadatas": [[entry["metadata"] for _, _, entry in scored]],
            "distances": [[distance for distance, _, _ in scored]],
        }


class FakeChromaClient:
    """Async stand-in for chromadb.AsyncHttpClient."""

    def __init__(self, collection: Optional[FakeCollection] = None):
        self.collection = collection or FakeCollection()
        self.alive = True
        self.heartbeat_calls = 0
        self.heartbeat_delay = 0.0

    async def heartbeat(self) -> int:
        self.heartbeat_calls += 1
        if self.heartbeat_delay:
            await asyncio.sleep(self.heartbeat_delay)
        if not self.alive:
            raise ConnectionError("Connection refused")
        return 1

    async def get_or_create_collection(self, name, embedding_function=None, metadata=None):
        self.collection.name = name
        self.collection.metadata = metadata
        return self.collection


class FakeSource(RepositorySource):
    """In-memory repository source that records every call."""

    def __init__(
        self,
        head: str = "rev2",
        files: Optional[Dict[str, bytes]] = None,
        changes: Optional[FileChanges] = None,
        fail_paths=(),
        fail_urls=(),
    ):
        self.head = head
        self.files = dict(files or {})
        self.changes = changes or FileChanges()
        self.fail_paths = set(fail_paths)
        self.fail_urls = set(fail_urls)
        self.calls: List[tuple] = []

    def get_latest_revision(self, source_url, branch):
        self.calls.append(("latest", source_url, branch))
        if source_url in self.fail_urls:
            raise SourceError(f"GET {source_url} returned 404: Not Found", status_code=404)
        return self.head

    def list_files(self, source_url, revision):
        self.calls.append(("list", source_url, revision))
        return list(self.files)

    def diff(self, source_url, base_revision, head_revision):
        self.calls.append(("diff", source_url, base_revision, head_revision))
        return self.changes

    def fetch_raw(self, source_url, revision, path):
        self.calls.append(("fetch", source_url, revision, path))
        if path in self.fail_paths:
            raise SourceError(f"GET {path} returned 500: Server Error", status_code=500)
        return self.files[path]


@pytest.fixture
def sleeps():
    """Recorded backoff delays."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def chroma():
    return FakeChromaClient()


@pytest.fixture
def vector_config(tmp_path):
    return VectorStoreConfig(
        host="localhost",
        port=10947,
        collection_name="test-collection",
        batch_size=100,
        batch_delay=0.5,
        batch_max_attempts=3,
        batch_retry_delay=2.0,
        max_concurrency=3,
        max_retries=3,
        retry_base_delay=1.0,
        request_timeout=5.0,
        probe_timeout=1.0,
        index_dir=str(tmp_path / "index"),
    )


@pytest.fixture
def make_store(vector_config, chroma, fake_sleep):
    """Factory for a VectorStoreClient wired to the fake index."""
    def _make(**overrides) -> VectorStoreClient:
        config = vector_config
        for key, value in overrides.items():
            setattr(config, key, value)
        return VectorStoreClient(
            config=config,
            metadata_store=MetadataStore(config.index_dir),
            embedding_function=object(),
            client=chroma,
            sleep=fake_sleep,
        )
    return _make


@pytest.fixture
def sync_config(tmp_path):
    return SyncConfig(
        state_dir=str(tmp_path / "state"),
        lock_timeout_minutes=20,
        min_interval_hours=24,
        allowed_extensions=[".md", ".mdx", ".txt", ".rst", ".pdf"],
        default_branch="main",
        sources_file="repo_urls.json",
        github_token=None,
    )
