"""Embedding generators."""

from typing import Optional

from recallflow.core.config import EmbeddingConfig, EmbeddingProvider
from recallflow.embeddings.base import EmbeddingGenerator
from recallflow.embeddings.hashing import HashingEmbeddingGenerator
from recallflow.embeddings.openai_embedder import OpenAIEmbeddingGenerator


def create_embedding_generator(config: EmbeddingConfig) -> Optional[EmbeddingGenerator]:
    """Build the generator selected by ``config.provider``; None disables embeddings."""
    if config.provider == EmbeddingProvider.OPENAI:
        return OpenAIEmbeddingGenerator(config)
    if config.provider == EmbeddingProvider.HASHING:
        return HashingEmbeddingGenerator(dimensions=config.dimensions)
    return None


__all__ = [
    "EmbeddingGenerator",
    "HashingEmbeddingGenerator",
    "OpenAIEmbeddingGenerator",
    "create_embedding_generator",
]
