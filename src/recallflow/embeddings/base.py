"""Embedding generator contract."""

from typing import Protocol, runtime_checkable

from recallflow.core.types import Embedding


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Turns text into a fixed-length vector.

    Implementations raise ``EmbeddingError`` when a vector cannot be
    produced. Callers in the memory layer treat that as "no embedding" and
    carry on.
    """

    async def embed_text(self, text: str) -> Embedding:
        ...
