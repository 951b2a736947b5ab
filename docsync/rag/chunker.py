"""
RAG Chunker
===========

Splits raw document text into semantically typed chunks.

Rules:
- Paragraphs are separated by blank lines
- Each paragraph is classified as code, list, section or paragraph
- Long prose paragraphs are packed sentence by sentence under a size limit
- Stable chunking (same input = same boundaries and types)
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .models import Chunk, ChunkType

logger = logging.getLogger(__name__)


PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)")

CODE_FENCE = "```"
# Keywords only count at the start of a line, so prose that merely mentions
# "function" or "class" stays a paragraph instead of becoming code.
CODE_KEYWORDS = re.compile(
    r"^\s*(?:def|class|function|async\s+function|import|from\s+\S+\s+import|const|let|var|export)\b",
    re.MULTILINE,
)
LIST_MARKER = re.compile(r"^(?:[-*+]|\d+\.)\s")
HEADING_MARKER = re.compile(r"^#{1,6}\s")


@dataclass
class ChunkConfig:
    """Chunking configuration."""
    # Prose paragraphs longer than this are split on sentence boundaries
    max_chars: int = 1000


class SemanticChunker:
    """
    Splits text into typed chunks.

    Only `paragraph` blocks are ever split further; code, lists and
    sections are kept whole so they embed as one unit.
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()

    def chunk(self, text: str) -> List[Chunk]:
        """
        Split text into an ordered list of chunks.

        Args:
            text: Raw document text

        Returns:
            List of Chunk objects, never containing blank content
        """
        chunks: List[Chunk] = []

        for position, paragraph in self._iter_paragraphs(text):
            trimmed = paragraph.strip()
            if not trimmed:
                continue

            start = position + (len(paragraph) - len(paragraph.lstrip()))
            chunk_type = self.classify(trimmed)

            if chunk_type == ChunkType.PARAGRAPH and len(trimmed) > self.config.max_chars:
                for piece_start, piece_end in self._pack_sentences(trimmed):
                    content = trimmed[piece_start:piece_end].strip()
                    if content:
                        chunks.append(self._make_chunk(
                            content, start + piece_start, start + piece_end, ChunkType.PARAGRAPH,
                        ))
            else:
                chunks.append(self._make_chunk(trimmed, start, start + len(trimmed), chunk_type))

        logger.debug(f"Chunked {len(text)} chars into {len(chunks)} chunks")
        return chunks

    def classify(self, paragraph: str) -> ChunkType:
        """Classify a trimmed paragraph by its leading pattern."""
        if CODE_FENCE in paragraph or CODE_KEYWORDS.search(paragraph):
            return ChunkType.CODE
        if LIST_MARKER.match(paragraph):
            return ChunkType.LIST
        if HEADING_MARKER.match(paragraph) or (paragraph[0].isupper() and paragraph.isupper()):
            return ChunkType.SECTION
        return ChunkType.PARAGRAPH

    def _iter_paragraphs(self, text: str) -> Iterator[Tuple[int, str]]:
        """Yield (offset, raw paragraph) pairs split on blank lines."""
        start = 0
        for match in PARAGRAPH_BREAK.finditer(text):
            yield start, text[start:match.start()]
            start = match.end()
        yield start, text[start:]

    def _sentence_spans(self, text: str) -> List[Tuple[int, int]]:
        """Return (start, end) spans of sentences, punctuation included."""
        spans = []
        start = 0
        for match in SENTENCE_END.finditer(text):
            spans.append((start, match.end()))
            start = match.end()
        if start < len(text):
            spans.append((start, len(text)))

        result = []
        for span_start, span_end in spans:
            while span_start < span_end and text[span_start].isspace():
                span_start += 1
            if span_start < span_end:
                result.append((span_start, span_end))
        return result

    def _pack_sentences(self, text: str) -> List[Tuple[int, int]]:
        """
        Greedily pack sentences into spans no longer than max_chars.

        A single sentence longer than the limit is hard-sliced.
        """
        limit = self.config.max_chars
        pieces: List[Tuple[int, int]] = []
        current: Optional[Tuple[int, int]] = None

        for span_start, span_end in self._sentence_spans(text):
            if span_end - span_start > limit:
                if current is not None:
                    pieces.append(current)
                    current = None
                for offset in range(span_start, span_end, limit):
                    pieces.append((offset, min(offset + limit, span_end)))
                continue

            if current is None:
                current = (span_start, span_end)
            elif span_end - current[0] > limit:
                pieces.append(current)
                current = (span_start, span_end)
            else:
                current = (current[0], span_end)

        # The trailing partial group becomes its own chunk
        if current is not None:
            pieces.append(current)

        return pieces

    def _make_chunk(self, content: str, start: int, end: int, chunk_type: ChunkType) -> Chunk:
        return Chunk(
            id=uuid.uuid4().hex,
            content=content,
            start_offset=start,
            end_offset=end,
            chunk_type=chunk_type,
        )
