"""
RAG Retriever
=============

Query-time retrieval:
1. Keyword normalization of the query
2. Similarity search (one per chunk-type facet, or one over-fetching search)
3. Relevance threshold, dedup and ranking
4. Context assembly under a character budget

Returns answer-ready context plus the list of source documents.
"""

import hashlib
import logging
import math
import re
from collections import Counter
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .models import RetrievalOptions, RetrievalResult, SearchFilters, SearchResult
from .vector_store import VectorStoreClient, VectorStoreError

logger = logging.getLogger(__name__)

PUNCTUATION = re.compile(r"[^\w\s]")
WHITESPACE = re.compile(r"\s+")

MIN_TERM_LENGTH = 4
MAX_QUERY_TERMS = 5

# A chunk that overflows the budget is truncated only above this score
TRUNCATION_MIN_SCORE = 0.7
TRUNCATION_MIN_REMAINING = 200
TRUNCATION_MARKER = "... [truncated]"
CHUNK_SEPARATOR = "\n\n"


class RetrievalError(Exception):
    """Backend failure while answering a query."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidQueryError(RetrievalError):
    """Empty query or invalid retrieval options. Never retried."""
    pass


def normalize_query(query: str) -> str:
    """
    Crude keyword extraction: strip punctuation, lowercase, keep words
    longer than 3 characters, at most 5 of them.

    Best-effort only. When no word survives, the cleaned query is used
    as is so short queries still search.
    """
    cleaned = WHITESPACE.sub(" ", PUNCTUATION.sub(" ", query)).strip().lower()
    terms = [word for word in cleaned.split(" ") if len(word) >= MIN_TERM_LENGTH]
    if not terms:
        return cleaned
    return " ".join(terms[:MAX_QUERY_TERMS])


def content_hash(text: str) -> str:
    """SHA-256 of whitespace-normalized content, used for dedup."""
    normalized = WHITESPACE.sub(" ", text).strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def build_answer_prompt(query: str, context: str, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Assemble chat messages for the downstream answer generator.

    The generator itself is external; this only formats its input.
    """
    system = system_prompt or (
        "You are a helpful assistant for the documentation provided as context. "
        "Answer with technical clarity from the context. If the context does not "
        "contain the answer, say so instead of guessing."
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Context:\n{context}\n\nQuestion: {query}\nAnswer:"},
    ]


class RetrievalEngine:
    """
    Turns a natural-language query into a bounded context string.

    Uses the VectorStoreClient for search and its MetadataStore to resolve
    full documents.
    """

    def __init__(self, vector_store: VectorStoreClient, logger: Optional[logging.Logger] = None):
        self.vector_store = vector_store
        self._logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        query: str,
        options: Optional[Union[RetrievalOptions, Dict[str, Any]]] = None,
    ) -> RetrievalResult:
        """
        Retrieve and assemble context for a query.

        Raises:
            InvalidQueryError: On empty query or invalid options
            RetrievalError: If the vector index fails
        """
        options = self._validate(query, options)
        search_query = normalize_query(query)

        try:
            candidates = await self._search(search_query, options)
        except VectorStoreError as e:
            self._logger.error(f"Retrieval failed for query '{query[:50]}': {e}")
            raise RetrievalError(f"Search failed: {e.message}") from e

        candidates = [c for c in candidates if c.relevance_score >= options.min_relevance_score]

        if options.include_full_documents:
            result = self._assemble_documents(candidates, options)
        else:
            result = self._assemble_chunks(candidates, options)

        self._logger.info(
            f"Retrieved {len(result.results)} results from "
            f"{len(result.source_files.splitlines())} documents ({len(result.context)} chars)"
        )
        return result

    def _validate(self, query: str, options: Optional[Union[RetrievalOptions, Dict[str, Any]]]) -> RetrievalOptions:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        if options is None:
            return RetrievalOptions()
        if isinstance(options, RetrievalOptions):
            return options
        try:
            return RetrievalOptions(**options)
        except ValidationError as e:
            raise InvalidQueryError(f"Invalid retrieval options: {e}") from e

    async def _search(self, query: str, options: RetrievalOptions) -> List[SearchResult]:
        """Faceted search per chunk type, or one search that over-fetches for dedup."""
        chunk_types = options.filter_by_chunk_type
        if not chunk_types:
            return await self.vector_store.search(query, k=options.max_results * 2)

        per_type = max(1, math.ceil(options.max_results / len(chunk_types)))
        merged: List[SearchResult] = []
        for chunk_type in chunk_types:
            merged.extend(await self.vector_store.search(
                query, k=per_type, filters=SearchFilters(chunk_type=chunk_type),
            ))

        merged.sort(key=lambda r: r.relevance_score, reverse=True)
        return merged[:options.max_results]

    def _assemble_documents(self, candidates: List[SearchResult], options: RetrievalOptions) -> RetrievalResult:
        """Full-document mode: one `[File: ...]` block per unique document."""
        ranked = sorted(candidates, key=lambda r: r.relevance_score, reverse=True)

        doc_ids: List[str] = []
        for result in ranked:
            if result.doc_id not in doc_ids:
                doc_ids.append(result.doc_id)
        doc_ids = doc_ids[:options.max_results]

        parts = []
        used_ids = []
        for doc_id in doc_ids:
            record = self.vector_store.get_document(doc_id)
            if record is None:
                self._logger.warning(f"Search returned unknown document {doc_id}")
                continue
            header = f"[File: {doc_id}]"
            if options.include_metadata and record.document_type:
                header += f" (type: {record.document_type})"
            parts.append(f"{header}\n{record.content}")
            used_ids.append(doc_id)

        kept = [r for r in ranked if r.doc_id in used_ids]
        return RetrievalResult(
            context=CHUNK_SEPARATOR.join(parts),
            source_files="\n".join(used_ids),
            results=kept,
        )

    def _assemble_chunks(self, candidates: List[SearchResult], options: RetrievalOptions) -> RetrievalResult:
        """Chunk mode: greedy accumulation under max_context_length."""
        budget = options.max_context_length
        ranked = sorted(candidates, key=lambda r: r.relevance_score, reverse=True)

        parts: List[str] = []
        kept: List[SearchResult] = []
        seen_hashes = set()
        length = 0

        for result in ranked:
            if len(kept) >= options.max_results:
                break
            digest = content_hash(result.content)
            if digest in seen_hashes:
                continue
            seen_hashes.add(digest)

            part = self._format_chunk(result, options.include_metadata)
            separator = len(CHUNK_SEPARATOR) if parts else 0

            if length + separator + len(part) <= budget:
                parts.append(part)
                kept.append(result)
                length += separator + len(part)
                continue

            remaining = budget - length - separator
            if result.relevance_score > TRUNCATION_MIN_SCORE and remaining >= TRUNCATION_MIN_REMAINING:
                truncated = part[:remaining - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER
                parts.append(truncated)
                kept.append(result)
                length += separator + len(truncated)
            break

        source_files: List[str] = []
        for result in kept:
            if result.doc_id not in source_files:
                source_files.append(result.doc_id)

        return RetrievalResult(
            context=CHUNK_SEPARATOR.join(parts),
            source_files="\n".join(source_files),
            results=kept,
        )

    def _format_chunk(self, result: SearchResult, include_metadata: bool) -> str:
        if not include_metadata:
            return result.content
        header = (
            f"[Source: {result.doc_id} | {result.chunk_type.value}"
            f" | relevance: {result.relevance_score:.2f}]"
        )
        return f"{header}\n{result.content}"

    async def diagnose(self, query: str, sample_size: int = 20) -> Dict[str, Any]:
        """
        Score, chunk-type and document distributions over a larger sample.

        For observability only; not used when assembling context.
        """
        if not query or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")

        search_query = normalize_query(query)
        try:
            results = await self.vector_store.search(search_query, k=sample_size)
        except VectorStoreError as e:
            raise RetrievalError(f"Search failed: {e.message}") from e

        scores = [r.relevance_score for r in results]
        return {
            "query": query,
            "normalized_query": search_query,
            "sample_size": len(results),
            "score_min": round(min(scores), 4) if scores else None,
            "score_max": round(max(scores), 4) if scores else None,
            "score_mean": round(sum(scores) / len(scores), 4) if scores else None,
            "score_buckets": {
                "high": sum(1 for s in scores if s > TRUNCATION_MIN_SCORE),
                "medium": sum(1 for s in scores if 0.3 <= s <= TRUNCATION_MIN_SCORE),
                "low": sum(1 for s in scores if s < 0.3),
            },
            "chunk_types": dict(Counter(r.chunk_type.value for r in results)),
            "documents": dict(Counter(r.doc_id for r in results)),
        }
