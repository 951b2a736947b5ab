"""
RAG Data Models
===============

Dataclasses for chunks, stored documents and search results, plus the
pydantic options model validated at the query boundary.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class ChunkType(str, Enum):
    """Semantic type of a chunk."""
    PARAGRAPH = "paragraph"
    SECTION = "section"
    CODE = "code"
    LIST = "list"


@dataclass(frozen=True)
class Chunk:
    """A typed slice of a document's text, the unit of embedding.

    Offsets point into the source text but are informational only: the
    union of chunk offsets does not reconstruct the original document.
    """
    id: str
    content: str
    start_offset: int
    end_offset: int
    chunk_type: ChunkType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "chunk_type": self.chunk_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            start_offset=int(data.get("start_offset", 0)),
            end_offset=int(data.get("end_offset", 0)),
            chunk_type=ChunkType(data.get("chunk_type", ChunkType.PARAGRAPH.value)),
        )


@dataclass
class DocumentRecord:
    """One ingested document. Owns its chunk list in the MetadataStore."""
    doc_id: str  # Source-relative path, globally unique
    content: str
    created_at: str
    last_modified: str
    document_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, doc_id: str, data: Dict[str, Any]) -> "DocumentRecord":
        return cls(
            doc_id=doc_id,
            content=str(data.get("content", "")),
            created_at=str(data.get("created_at", "")),
            last_modified=str(data.get("last_modified", "")),
            document_type=data.get("document_type"),
        )


@dataclass
class SearchFilters:
    """Conjunctive metadata filters for similarity search."""
    document_type: Optional[str] = None
    chunk_type: Optional[ChunkType] = None

    def __post_init__(self):
        if isinstance(self.chunk_type, str):
            self.chunk_type = ChunkType(self.chunk_type)

    def to_where(self) -> Optional[Dict[str, Any]]:
        """Convert to a vector-index `where` clause."""
        conditions = []
        if self.document_type:
            conditions.append({"documentType": self.document_type})
        if self.chunk_type:
            conditions.append({"chunkType": self.chunk_type.value})

        if not conditions:
            return None
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}


@dataclass
class SearchResult:
    """A candidate chunk returned by similarity search."""
    doc_id: str
    chunk_id: str
    content: str
    chunk_type: ChunkType
    relevance_score: float  # Higher is better, in [0, 1]
    distance: float
    document_type: Optional[str] = None


class RetrievalOptions(BaseModel):
    """Options for query-time retrieval."""
    max_results: int = Field(5, ge=1, le=100, description="Number of results to keep")
    min_relevance_score: float = Field(0.3, ge=0.0, le=1.0)
    include_metadata: bool = False
    filter_by_chunk_type: List[ChunkType] = Field(default_factory=list)
    max_context_length: int = Field(4000, ge=1)
    include_full_documents: bool = True

    @field_validator("filter_by_chunk_type")
    @classmethod
    def _unique_types(cls, value: List[ChunkType]) -> List[ChunkType]:
        seen: List[ChunkType] = []
        for chunk_type in value:
            if chunk_type not in seen:
                seen.append(chunk_type)
        return seen


@dataclass
class RetrievalResult:
    """Answer-ready context and the documents it was built from."""
    context: str
    source_files: str  # Newline-joined unique doc ids
    results: List[SearchResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, str]:
        return {"context": self.context, "source_files": self.source_files}
