"""
Docsync RAG Module
==================

Chunking, vector indexing and retrieval for the documentation assistant.

Architecture:
- ChromaDB (HTTP) for vector storage
- OpenAI text-embedding-3-small through the index's embedding function
- JSON MetadataStore mirroring the index per document
- Retrieval: keyword normalization → similarity search → dedup → budgeted context
"""

from .chunker import SemanticChunker, ChunkConfig
from .metadata_store import MetadataStore
from .vector_store import (
    VectorStoreClient,
    VectorStoreError,
    VectorStoreUnavailableError,
)
from .retriever import (
    RetrievalEngine,
    RetrievalError,
    InvalidQueryError,
    build_answer_prompt,
    normalize_query,
)
from .models import (
    Chunk,
    ChunkType,
    DocumentRecord,
    SearchFilters,
    SearchResult,
    RetrievalOptions,
    RetrievalResult,
)

__all__ = [
    "SemanticChunker",
    "ChunkConfig",
    "MetadataStore",
    "VectorStoreClient",
    "VectorStoreError",
    "VectorStoreUnavailableError",
    "RetrievalEngine",
    "RetrievalError",
    "InvalidQueryError",
    "build_answer_prompt",
    "normalize_query",
    "Chunk",
    "ChunkType",
    "DocumentRecord",
    "SearchFilters",
    "SearchResult",
    "RetrievalOptions",
    "RetrievalResult",
]
