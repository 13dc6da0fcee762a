"""Offline embeddings via feature hashing."""

import hashlib
import math
import re

from recallflow.core.types import Embedding

_WORD = re.compile(r"\w+")


class HashingEmbeddingGenerator:
    """Deterministic bag-of-words embeddings.

    Every lowercase word is hashed to one of ``dimensions`` buckets with a
    hash-derived sign, and the vector is L2-normalized. Identical texts
    always get identical vectors, and texts sharing words get positive
    cosine similarity. Needs no network access, which makes it the default
    for tests and local development.

    Example:
        ```python
        embedder = HashingEmbeddingGenerator(dimensions=256)
        vector = await embedder.embed_text("The capital of France is Paris")
        ```
    """

    def __init__(self, dimensions: int = 256):
        if dimensions < 1:
            raise ValueError("dimensions must be at least 1")
        self.dimensions = dimensions

    async def embed_text(self, text: str) -> Embedding:
        vector = [0.0] * self.dimensions

        for word in _WORD.findall(text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]
