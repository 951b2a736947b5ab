"""
Source collaborator interfaces.

The sync coordinator only talks to these; concrete adapters live beside them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


class SourceError(Exception):
    """Remote repository request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


@dataclass
class FileChanges:
    """Files changed between two revisions."""
    changed: List[str] = field(default_factory=list)  # added or modified
    removed: List[str] = field(default_factory=list)


class RepositorySource(ABC):
    """Remote repository: revisions, listings, diffs and raw content."""

    @abstractmethod
    def get_latest_revision(self, source_url: str, branch: str) -> str:
        """Resolve the head revision of a branch."""

    @abstractmethod
    def list_files(self, source_url: str, revision: str) -> List[str]:
        """List every file path at a revision."""

    @abstractmethod
    def diff(self, source_url: str, base_revision: str, head_revision: str) -> FileChanges:
        """Changed and removed paths between two revisions."""

    @abstractmethod
    def fetch_raw(self, source_url: str, revision: str, path: str) -> bytes:
        """Raw content of one file at a revision."""


class TextExtractor(ABC):
    """Converts raw bytes of a binary document format to plain text."""

    @abstractmethod
    def extract(self, data: bytes) -> str:
        """Return extracted text, or an empty string if extraction failed."""
