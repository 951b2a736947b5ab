"""
Tests for docsync retrieval engine.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from docsync.rag.models import ChunkType, DocumentRecord, RetrievalOptions, SearchResult
from docsync.rag.retriever import (
    TRUNCATION_MARKER,
    InvalidQueryError,
    RetrievalEngine,
    RetrievalError,
    build_answer_prompt,
    content_hash,
    normalize_query,
)
from docsync.rag.vector_store import VectorStoreUnavailableError


def result(doc_id, content, score, chunk_type=ChunkType.PARAGRAPH, chunk_id=None):
    return SearchResult(
        doc_id=doc_id,
        chunk_id=chunk_id or f"{doc_id}-{score}",
        content=content,
        chunk_type=chunk_type,
        relevance_score=score,
        distance=1.0 - score,
    )


def record(doc_id, content, document_type=None):
    return DocumentRecord(
        doc_id=doc_id,
        content=content,
        created_at="2024-01-01T00:00:00+00:00",
        last_modified="2024-01-01T00:00:00+00:00",
        document_type=document_type,
    )


def make_engine(results=None, documents=None):
    """Engine over a mocked vector store."""
    documents = documents or {}
    vector_store = Mock()
    vector_store.search = AsyncMock(return_value=list(results or []))
    vector_store.get_document = Mock(side_effect=lambda doc_id: documents.get(doc_id))
    return RetrievalEngine(vector_store), vector_store


# =============================================================================
# Query normalization
# =============================================================================

class TestNormalizeQuery:
    """Tests for keyword extraction."""

    def test_drops_short_words_and_punctuation(self):
        assert normalize_query("How do I configure the webhook?") == "configure webhook"

    def test_lowercases(self):
        assert normalize_query("INSTALL Docsync") == "install docsync"

    def test_keeps_at_most_five_terms(self):
        query = "alpha bravo charlie delta echoes foxtrot golfer"
        assert normalize_query(query) == "alpha bravo charlie delta echoes"

    def test_short_query_falls_back(self):
        assert normalize_query("API key?") == "api key"

    def test_content_hash_ignores_whitespace(self):
        assert content_hash("a  b\n c") == content_hash("a b c")
        assert content_hash("a b c") != content_hash("a b d")


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Tests for query and option validation."""

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query(self, query):
        engine, vector_store = make_engine()
        with pytest.raises(InvalidQueryError):
            asyncio.run(engine.run(query))
        vector_store.search.assert_not_called()

    @pytest.mark.parametrize("options", [
        {"max_results": 0},
        {"min_relevance_score": 1.5},
        {"max_context_length": 0},
        {"filter_by_chunk_type": ["table"]},
    ])
    def test_invalid_options(self, options):
        engine, _ = make_engine()
        with pytest.raises(InvalidQueryError):
            asyncio.run(engine.run("install", options))

    def test_duplicate_chunk_types_collapsed(self):
        options = RetrievalOptions(filter_by_chunk_type=["code", "code", "list"])
        assert options.filter_by_chunk_type == [ChunkType.CODE, ChunkType.LIST]

    def test_backend_failure(self):
        engine, vector_store = make_engine()
        vector_store.search.side_effect = VectorStoreUnavailableError("query failed after 3 attempts")

        with pytest.raises(RetrievalError) as exc_info:
            asyncio.run(engine.run("install"))
        assert not isinstance(exc_info.value, InvalidQueryError)


# =============================================================================
# Search strategy
# =============================================================================

class TestSearchStrategy:
    """Tests for faceted and unfaceted search."""

    def test_unfaceted_overfetches(self):
        engine, vector_store = make_engine()
        asyncio.run(engine.run("How do I install docsync?", {"max_results": 5}))

        vector_store.search.assert_awaited_once_with("install docsync", k=10)

    def test_one_search_per_facet(self):
        engine, vector_store = make_engine()
        vector_store.search.side_effect = [
            [result("code.md", "def run()", 0.9, ChunkType.CODE),
             result("code.md", "def stop()", 0.4, ChunkType.CODE)],
            [result("guide.md", "Run it.", 0.8),
             result("guide.md", "Stop it.", 0.7)],
        ]

        output = asyncio.run(engine.run("running", {
            "max_results": 3,
            "filter_by_chunk_type": ["code", "paragraph"],
            "include_full_documents": False,
        }))

        calls = vector_store.search.await_args_list
        assert len(calls) == 2
        assert [c.kwargs["k"] for c in calls] == [2, 2]
        assert [c.kwargs["filters"].chunk_type for c in calls] == [ChunkType.CODE, ChunkType.PARAGRAPH]
        assert [r.relevance_score for r in output.results] == [0.9, 0.8, 0.7]

    def test_min_relevance_filter(self):
        engine, _ = make_engine(
            results=[result("a.md", "weak match", 0.2)],
            documents={"a.md": record("a.md", "weak match")},
        )
        output = asyncio.run(engine.run("install"))

        assert output.to_dict() == {"context": "", "source_files": ""}


# =============================================================================
# Full-document mode
# =============================================================================

class TestFullDocuments:
    """Tests for whole-document context assembly."""

    def test_document_included_once(self):
        engine, _ = make_engine(
            results=[result("a.md", "part one", 0.9), result("a.md", "part two", 0.8)],
            documents={"a.md": record("a.md", "part one\n\npart two")},
        )
        output = asyncio.run(engine.run("install"))

        assert output.context == "[File: a.md]\npart one\n\npart two"
        assert output.source_files == "a.md"

    def test_ordered_by_best_score(self):
        engine, _ = make_engine(
            results=[result("b.md", "b", 0.5), result("a.md", "a", 0.9)],
            documents={"a.md": record("a.md", "A doc"), "b.md": record("b.md", "B doc")},
        )
        output = asyncio.run(engine.run("install"))

        assert output.source_files == "a.md\nb.md"
        assert output.context.index("[File: a.md]") < output.context.index("[File: b.md]")

    def test_bounded_by_max_results(self):
        docs = {f"{i}.md": record(f"{i}.md", f"doc {i}") for i in range(4)}
        engine, _ = make_engine(
            results=[result(f"{i}.md", f"doc {i}", 0.9 - i * 0.1) for i in range(4)],
            documents=docs,
        )
        output = asyncio.run(engine.run("install", {"max_results": 2}))

        assert output.source_files.splitlines() == ["0.md", "1.md"]

    def test_unknown_document_skipped(self):
        engine, _ = make_engine(results=[result("gone.md", "stale", 0.9)])
        output = asyncio.run(engine.run("install"))

        assert output.context == ""
        assert output.source_files == ""


# =============================================================================
# Chunk mode
# =============================================================================

class TestChunkMode:
    """Tests for budgeted chunk assembly."""

    OPTIONS = {"include_full_documents": False}

    def test_budget_respected(self):
        engine, _ = make_engine(results=[
            result("a.md", "x" * 20, 0.5),
            result("b.md", "y" * 20, 0.4),
        ])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, max_context_length=30)))

        assert output.context == "x" * 20
        assert output.source_files == "a.md"

    def test_duplicate_content_included_once(self):
        engine, _ = make_engine(results=[
            result("a.md", "Shared  paragraph text.", 0.9),
            result("b.md", "Shared paragraph text.", 0.8),
            result("c.md", "Different text.", 0.7),
        ])
        output = asyncio.run(engine.run("install", self.OPTIONS))

        assert output.context == "Shared  paragraph text.\n\nDifferent text."
        assert output.source_files == "a.md\nc.md"

    def test_high_score_tail_truncated(self):
        engine, _ = make_engine(results=[
            result("a.md", "short", 0.95),
            result("b.md", "z" * 500, 0.9),
        ])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, max_context_length=300)))

        assert output.context.startswith("short\n\n")
        assert output.context.endswith(TRUNCATION_MARKER)
        assert len(output.context) <= 300
        assert output.source_files == "a.md\nb.md"

    def test_low_score_tail_dropped(self):
        engine, _ = make_engine(results=[
            result("a.md", "short", 0.95),
            result("b.md", "z" * 500, 0.5),
        ])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, max_context_length=300)))

        assert output.context == "short"

    def test_tail_needs_room(self):
        engine, _ = make_engine(results=[
            result("a.md", "w" * 150, 0.95),
            result("b.md", "z" * 500, 0.9),
        ])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, max_context_length=300)))

        assert output.context == "w" * 150

    def test_metadata_header(self):
        engine, _ = make_engine(results=[result("a.md", "body", 0.9, ChunkType.CODE)])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, include_metadata=True)))

        assert output.context == "[Source: a.md | code | relevance: 0.90]\nbody"

    def test_chunks_bounded_by_max_results(self):
        engine, vector_store = make_engine(results=[
            result(f"doc{i}.md", f"Distinct chunk number {i}.", 0.9 - i * 0.05) for i in range(10)
        ])
        output = asyncio.run(engine.run("install guide", dict(self.OPTIONS, max_results=5)))

        vector_store.search.assert_awaited_once_with("install guide", k=10)
        assert len(output.results) == 5
        assert output.source_files.splitlines() == [f"doc{i}.md" for i in range(5)]

    def test_duplicates_do_not_count_toward_max_results(self):
        engine, _ = make_engine(results=[
            result("a.md", "Shared text.", 0.9),
            result("b.md", "Shared text.", 0.85),
            result("c.md", "Other text.", 0.8),
        ])
        output = asyncio.run(engine.run("install", dict(self.OPTIONS, max_results=2)))

        assert output.source_files == "a.md\nc.md"


# =============================================================================
# Diagnostics and prompt assembly
# =============================================================================

class TestDiagnostics:
    """Tests for the diagnostic summary."""

    def test_distributions(self):
        engine, vector_store = make_engine(results=[
            result("a.md", "one", 0.9, ChunkType.CODE),
            result("a.md", "two", 0.5),
            result("b.md", "three", 0.1),
        ])
        report = asyncio.run(engine.diagnose("install docs", sample_size=20))

        vector_store.search.assert_awaited_once_with("install docs", k=20)
        assert report["sample_size"] == 3
        assert report["score_max"] == 0.9
        assert report["score_buckets"] == {"high": 1, "medium": 1, "low": 1}
        assert report["chunk_types"] == {"code": 1, "paragraph": 2}
        assert report["documents"] == {"a.md": 2, "b.md": 1}

    def test_empty_sample(self):
        engine, _ = make_engine()
        report = asyncio.run(engine.diagnose("install"))
        assert report["score_mean"] is None


class TestAnswerPrompt:
    """Tests for answer prompt assembly."""

    def test_messages(self):
        messages = build_answer_prompt("How to install?", "[File: a.md]\npip install")

        assert [m["role"] for m in messages] == ["system", "user"]
        assert "pip install" in messages[1]["content"]
        assert messages[1]["content"].endswith("Question: How to install?\nAnswer:")

    def test_custom_system_prompt(self):
        messages = build_answer_prompt("q", "ctx", system_prompt="Be brief.")
        assert messages[0]["content"] == "Be brief."
