"""
RAG Embedder
============

Builds the embedding function the vector index calls on upsert and query.
OpenAI text-embedding-3-small by default, 1536 dimensions.
"""

import logging

from chromadb.utils.embedding_functions import OpenAIEmbeddingFunction

from ..config import ConfigurationError, EmbeddingConfig

logger = logging.getLogger(__name__)


def build_embedding_function(config: EmbeddingConfig) -> OpenAIEmbeddingFunction:
    """
    Create the index-side embedding function.

    Raises:
        ConfigurationError: If no API key is configured
    """
    if not config.api_key:
        raise ConfigurationError("OPENAI_API_KEY is required for embeddings")

    logger.info(f"Using embedding model {config.model}")
    return OpenAIEmbeddingFunction(api_key=config.api_key, model_name=config.model)
