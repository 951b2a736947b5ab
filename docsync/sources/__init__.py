"""
Docsync Sources Module
======================

Collaborators that supply document content to the sync coordinator:
    - GitHubSource: revisions, tree listings, diffs and raw files
    - PdfTextExtractor: PDF bytes to plain text
"""

from .base import FileChanges, RepositorySource, SourceError, TextExtractor
from .github_client import GitHubSource, parse_repo_url
from .pdf_extractor import PdfTextExtractor

__all__ = [
    "FileChanges",
    "RepositorySource",
    "SourceError",
    "TextExtractor",
    "GitHubSource",
    "parse_repo_url",
    "PdfTextExtractor",
]
