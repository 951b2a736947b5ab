"""
GitHub Repository Source
========================

Thin client for the GitHub REST API and raw content host.

Endpoints used:
    GET /repos/{owner}/{repo}/commits/{branch}           latest revision
    GET /repos/{owner}/{repo}/git/trees/{sha}?recursive=1 full file listing
    GET /repos/{owner}/{repo}/compare/{base}...{head}     changed files
    GET {raw}/{owner}/{repo}/{sha}/{path}                 raw file content

Configuration:
    GITHUB_TOKEN: Optional API token (raises the rate limit)
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from ..config import ConfigurationError, SyncConfig
from .base import FileChanges, RepositorySource, SourceError

logger = logging.getLogger(__name__)

CHANGED_STATUSES = {"added", "modified", "changed", "copied", "renamed"}


def parse_repo_url(source_url: str) -> Tuple[str, str]:
    """
    Extract (owner, repo) from a repository URL.

    Raises:
        ConfigurationError: If the URL has no owner/repo path
    """
    parts = [p for p in source_url.strip().rstrip("/").split("/") if p]
    if len(parts) < 2:
        raise ConfigurationError(f"Cannot resolve repository from URL: {source_url!r}")
    owner, repo = parts[-2], parts[-1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo or ":" in owner:
        raise ConfigurationError(f"Cannot resolve repository from URL: {source_url!r}")
    return owner, repo


class GitHubSource(RepositorySource):
    """
    Repository source backed by the GitHub API.

    Errors are not retried here; the coordinator decides whether a failure
    skips a file or aborts the sync.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or SyncConfig()
        self.api_url = self.config.github_api_url.rstrip("/")
        self.raw_url = self.config.github_raw_url.rstrip("/")
        self.timeout = self.config.source_request_timeout

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        if self.config.github_token:
            self.session.headers["Authorization"] = f"Bearer {self.config.github_token}"

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise SourceError(
                f"GET {url} returned {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(f"Invalid JSON from {url}: {e}") from e

    def get_latest_revision(self, source_url: str, branch: str) -> str:
        owner, repo = parse_repo_url(source_url)
        data = self._get_json(f"{self.api_url}/repos/{owner}/{repo}/commits/{quote(branch, safe='')}")
        sha = data.get("sha")
        if not sha:
            raise SourceError(f"No revision returned for {owner}/{repo}@{branch}")
        return sha

    def list_files(self, source_url: str, revision: str) -> List[str]:
        owner, repo = parse_repo_url(source_url)
        data = self._get_json(
            f"{self.api_url}/repos/{owner}/{repo}/git/trees/{revision}",
            params={"recursive": 1},
        )
        if data.get("truncated"):
            logger.warning(f"Tree listing for {owner}/{repo}@{revision[:8]} was truncated")
        return [item["path"] for item in data.get("tree", []) if item.get("type") == "blob"]

    def diff(self, source_url: str, base_revision: str, head_revision: str) -> FileChanges:
        owner, repo = parse_repo_url(source_url)
        data = self._get_json(
            f"{self.api_url}/repos/{owner}/{repo}/compare/{base_revision}...{head_revision}"
        )

        changes = FileChanges()
        for item in data.get("files") or []:
            status = item.get("status")
            filename = item.get("filename")
            if not filename:
                continue
            if status == "removed":
                changes.removed.append(filename)
            elif status in CHANGED_STATUSES:
                changes.changed.append(filename)
                if status == "renamed" and item.get("previous_filename"):
                    changes.removed.append(item["previous_filename"])

        logger.info(
            f"{owner}/{repo} {base_revision[:8]}...{head_revision[:8]}: "
            f"{len(changes.changed)} changed, {len(changes.removed)} removed"
        )
        return changes

    def fetch_raw(self, source_url: str, revision: str, path: str) -> bytes:
        owner, repo = parse_repo_url(source_url)
        return self._get(f"{self.raw_url}/{owner}/{repo}/{revision}/{quote(path)}").content
