"""OpenAI-compatible embedding generator."""

from typing import Optional

import structlog
import tiktoken
from openai import AsyncOpenAI, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential

from recallflow.core.config import EmbeddingConfig
from recallflow.core.errors import EmbeddingError
from recallflow.core.types import Embedding

logger = structlog.get_logger()

# Input limit of the text-embedding-3 family
MAX_INPUT_TOKENS = 8191


class OpenAIEmbeddingGenerator:
    """Embeddings from the OpenAI API or any OpenAI-compatible server.

    Supports:
    - OpenAI API
    - vLLM / Ollama / other servers exposing ``/v1/embeddings``

    Inputs longer than the model's token limit are truncated with tiktoken
    before the request is sent.
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self._client: Optional[AsyncOpenAI] = None
        self._tokenizer: Optional[tiktoken.Encoding] = None

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client."""
        if self._client is None:
            api_key = self.config.api_key.get_secret_value() if self.config.api_key else "dummy"
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.api_base,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
            )
        return self._client

    @property
    def tokenizer(self) -> tiktoken.Encoding:
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.config.model)
            except KeyError:
                # Fallback for models tiktoken does not know
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    async def embed_text(self, text: str) -> Embedding:
        """Embed one text, raising ``EmbeddingError`` once retries are exhausted."""
        try:
            return await self._create(self._truncate(text))
        except OpenAIError as e:
            logger.warning("Embedding request failed", model=self.config.model, error=str(e))
            raise EmbeddingError(f"embedding request failed: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _create(self, text: str) -> Embedding:
        params = {"input": [text], "model": self.config.model}
        if self.config.model.startswith("text-embedding-3"):
            params["dimensions"] = self.config.dimensions

        response = await self.client.embeddings.create(**params)
        return list(response.data[0].embedding)

    def _truncate(self, text: str) -> str:
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= MAX_INPUT_TOKENS:
            return text
        logger.debug("Truncated embedding input", tokens=len(tokens), limit=MAX_INPUT_TOKENS)
        return self.tokenizer.decode(tokens[:MAX_INPUT_TOKENS])

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
