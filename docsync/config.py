"""
Docsync Configuration Module
============================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    CHROMA_HOST: Vector index host (default: localhost)
    CHROMA_PORT: Vector index port (default: 10947)
    CHROMA_COLLECTION: Collection name (default: rag-collection)
    VECTOR_MAX_CONCURRENCY: Max in-flight index calls (default: 3)
    VECTOR_MAX_RETRIES: Attempts for connection-class errors (default: 3)
    VECTOR_REQUEST_TIMEOUT: Per-call timeout in seconds (default: 30)
    INDEX_DIR: Directory for metadata.json / chunkmap.json (default: index)

    OPENAI_API_KEY: Embedding provider credential (required for indexing)
    EMBEDDING_MODEL: Embedding model (default: text-embedding-3-small)

    SYNC_STATE_DIR: Directory for checkpoints and the lock file (default: data)
    SYNC_LOCK_TIMEOUT_MINUTES: Lock expiry (default: 20)
    SYNC_MIN_INTERVAL_HOURS: Minimum time between syncs (default: 24)
    SYNC_ALLOWED_EXTENSIONS: Comma-separated list (default: .md,.mdx,.txt,.rst,.pdf)
    GITHUB_TOKEN: Optional token for the repository API
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()


class ConfigurationError(ValueError):
    """Missing credential or invalid setting. Never retried."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Get environment variable with optional default and required validation.

    Raises:
        ConfigurationError: If required=True and variable is not set
    """
    value = os.getenv(key, default)
    if required and value is None:
        raise ConfigurationError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get comma-separated environment variable as a list."""
    value = os.getenv(key)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


DEFAULT_ALLOWED_EXTENSIONS = [".md", ".mdx", ".txt", ".rst", ".pdf"]


@dataclass
class VectorStoreConfig:
    """Vector index connection, batching and retry configuration."""

    host: str = field(default_factory=lambda: get_env("CHROMA_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("CHROMA_PORT", 10947))
    ssl: bool = field(default_factory=lambda: get_env_bool("CHROMA_SSL", False))
    collection_name: str = field(default_factory=lambda: get_env("CHROMA_COLLECTION", "rag-collection"))

    # Upsert batching
    batch_size: int = field(default_factory=lambda: get_env_int("VECTOR_BATCH_SIZE", 100))
    batch_delay: float = field(default_factory=lambda: get_env_float("VECTOR_BATCH_DELAY", 0.5))
    batch_max_attempts: int = field(default_factory=lambda: get_env_int("VECTOR_BATCH_MAX_ATTEMPTS", 3))
    batch_retry_delay: float = field(default_factory=lambda: get_env_float("VECTOR_BATCH_RETRY_DELAY", 2.0))

    # Gate and retry policy for every index call
    max_concurrency: int = field(default_factory=lambda: get_env_int("VECTOR_MAX_CONCURRENCY", 3))
    max_retries: int = field(default_factory=lambda: get_env_int("VECTOR_MAX_RETRIES", 3))
    retry_base_delay: float = field(default_factory=lambda: get_env_float("VECTOR_RETRY_BASE_DELAY", 1.0))

    # Timeouts in seconds
    request_timeout: float = field(default_factory=lambda: get_env_float("VECTOR_REQUEST_TIMEOUT", 30.0))
    probe_timeout: float = field(default_factory=lambda: get_env_float("VECTOR_PROBE_TIMEOUT", 5.0))

    # Local metadata persistence
    index_dir: str = field(default_factory=lambda: get_env("INDEX_DIR", "index"))

    def __post_init__(self):
        """Validate configuration."""
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be positive")
        if self.max_concurrency <= 0:
            raise ConfigurationError("max_concurrency must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.batch_max_attempts < 1:
            raise ConfigurationError("batch_max_attempts must be at least 1")


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration (consumed through the index)."""

    api_key: Optional[str] = field(default_factory=lambda: get_env("OPENAI_API_KEY"))
    model: str = field(default_factory=lambda: get_env("EMBEDDING_MODEL", "text-embedding-3-small"))


@dataclass
class SyncConfig:
    """Incremental sync configuration."""

    state_dir: str = field(default_factory=lambda: get_env("SYNC_STATE_DIR", "data"))
    lock_timeout_minutes: float = field(default_factory=lambda: get_env_float("SYNC_LOCK_TIMEOUT_MINUTES", 20.0))
    min_interval_hours: float = field(default_factory=lambda: get_env_float("SYNC_MIN_INTERVAL_HOURS", 24.0))
    allowed_extensions: List[str] = field(
        default_factory=lambda: get_env_list("SYNC_ALLOWED_EXTENSIONS", DEFAULT_ALLOWED_EXTENSIONS)
    )
    default_branch: str = field(default_factory=lambda: get_env("SYNC_DEFAULT_BRANCH", "main"))

    # Tracked sources file (JSON list of repository URLs)
    sources_file: str = field(default_factory=lambda: get_env("SYNC_SOURCES_FILE", "repo_urls.json"))

    # Remote repository collaborator
    github_token: Optional[str] = field(default_factory=lambda: get_env("GITHUB_TOKEN"))
    github_api_url: str = field(default_factory=lambda: get_env("GITHUB_API_URL", "https://api.github.com"))
    github_raw_url: str = field(default_factory=lambda: get_env("GITHUB_RAW_URL", "https://raw.githubusercontent.com"))
    source_request_timeout: float = field(default_factory=lambda: get_env_float("SOURCE_REQUEST_TIMEOUT", 30.0))

    def __post_init__(self):
        """Validate configuration."""
        if self.lock_timeout_minutes <= 0:
            raise ConfigurationError("lock_timeout_minutes must be positive")
        if self.min_interval_hours < 0:
            raise ConfigurationError("min_interval_hours cannot be negative")
        self.allowed_extensions = [
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in self.allowed_extensions
        ]


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))

    # File rotation
    max_bytes: int = field(default_factory=lambda: get_env_int("LOG_MAX_BYTES", 5 * 1024 * 1024))
    backup_count: int = field(default_factory=lambda: get_env_int("LOG_BACKUP_COUNT", 3))

    def __post_init__(self):
        if self.max_bytes < 0 or self.backup_count < 0:
            raise ConfigurationError("LOG_MAX_BYTES and LOG_BACKUP_COUNT must be >= 0")


@dataclass
class Settings:
    """Main application settings container."""

    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_settings() -> Settings:
    """
    Load and validate all application settings.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    return Settings()
