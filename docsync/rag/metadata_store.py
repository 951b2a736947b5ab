"""
RAG Metadata Store
==================

Durable mapping from document id to full content and chunk list, kept
next to the vector index so the index can be diffed, rebuilt or cleaned
up consistently.

Files (JSON) under the index directory:
    metadata.json   doc_id -> {content, document_type, created_at, last_modified}
    chunkmap.json   doc_id -> [chunk, ...]
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import Chunk, DocumentRecord

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
CHUNK_MAP_FILE = "chunkmap.json"


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temp file in the same directory, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def read_json(path: Path, log: logging.Logger) -> Optional[Any]:
    """Read a JSON file. Missing or corrupt files yield None."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        log.warning(f"Discarding unreadable state file {path}: {e}")
        return None


class MetadataStore:
    """
    Document records and chunk lists, persisted as JSON.

    Survives process restarts. Corrupt files are treated as empty.
    """

    def __init__(self, index_dir: Path, logger: Optional[logging.Logger] = None):
        self._index_dir = Path(index_dir)
        self._metadata_path = self._index_dir / METADATA_FILE
        self._chunk_map_path = self._index_dir / CHUNK_MAP_FILE
        self._logger = logger or logging.getLogger(__name__)

        self._records: Dict[str, DocumentRecord] = {}
        self._chunks: Dict[str, List[Chunk]] = {}
        self._disk_signature: Tuple = ()
        self._load()

        if self._records:
            self._logger.info(
                f"Loaded metadata for {len(self._records)} documents from {self._index_dir}"
            )

    def _load(self) -> None:
        """Load state from disk."""
        raw_metadata = read_json(self._metadata_path, self._logger)
        if isinstance(raw_metadata, dict):
            for doc_id, data in raw_metadata.items():
                if isinstance(data, dict):
                    self._records[doc_id] = DocumentRecord.from_dict(doc_id, data)

        raw_chunks = read_json(self._chunk_map_path, self._logger)
        if isinstance(raw_chunks, dict):
            for doc_id, items in raw_chunks.items():
                try:
                    self._chunks[doc_id] = [Chunk.from_dict(item) for item in items]
                except (KeyError, TypeError, ValueError) as e:
                    self._logger.warning(f"Dropping malformed chunk list for {doc_id}: {e}")

        self._disk_signature = self._signature()

    def _signature(self) -> Tuple:
        """Identity of both files on disk; atomic writes always change the inode."""
        parts = []
        for path in (self._metadata_path, self._chunk_map_path):
            try:
                stat = path.stat()
            except FileNotFoundError:
                parts.append(None)
                continue
            parts.append((stat.st_ino, stat.st_mtime_ns, stat.st_size))
        return tuple(parts)

    def reload(self) -> None:
        """Discard in-memory state and re-read both files."""
        self._records = {}
        self._chunks = {}
        self._load()

    def refresh(self) -> bool:
        """
        Reload if another process rewrote the files since our last load or save.

        Callers save after each mutation, so a reload never drops our own writes.

        Returns:
            True if the maps were re-read
        """
        if self._signature() == self._disk_signature:
            return False
        self._logger.debug(f"Metadata in {self._index_dir} changed on disk, reloading")
        self.reload()
        return True

    def save(self) -> None:
        """Persist both maps to disk."""
        metadata = {}
        for doc_id, record in self._records.items():
            data = record.to_dict()
            data.pop("doc_id")
            metadata[doc_id] = data
        chunk_map = {
            doc_id: [chunk.to_dict() for chunk in chunks]
            for doc_id, chunks in self._chunks.items()
        }
        write_json_atomic(self._metadata_path, metadata)
        write_json_atomic(self._chunk_map_path, chunk_map)
        self._disk_signature = self._signature()

    # =========================================================================
    # Accessors
    # =========================================================================

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, doc_id: str) -> Optional[DocumentRecord]:
        return self._records.get(doc_id)

    def get_chunks(self, doc_id: str) -> List[Chunk]:
        return list(self._chunks.get(doc_id, []))

    def doc_ids(self) -> List[str]:
        return sorted(self._records)

    # =========================================================================
    # Mutations (callers refresh() first and persist with save())
    # =========================================================================

    def put(self, record: DocumentRecord, chunks: List[Chunk]) -> None:
        """Replace a document's record and chunk list together."""
        self._records[record.doc_id] = record
        self._chunks[record.doc_id] = list(chunks)

    def remove(self, doc_id: str) -> None:
        """Drop a document and, with it, its chunk list."""
        self._records.pop(doc_id, None)
        self._chunks.pop(doc_id, None)
