"""
Docsync - Documentation ingestion and retrieval for a chat assistant.

Packages:
    rag      Chunking, vector index client, retrieval
    sources  Remote repository and PDF collaborators
    sync     Lock-guarded incremental sync
"""

from .service import DocsAssistant

__version__ = "1.0.0"

__all__ = ["DocsAssistant"]
