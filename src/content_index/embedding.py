"""Embedding clients and the resilient embedding wrapper.

Clients talk to a model server and classify its failures into the package's
error taxonomy. ``ResilientEmbedder`` sits on top of one client and owns the
retry policy:

- input too long → retry with the text shrunk to 80% of its words
- timeout / transient I/O → retry the same text
- both share one attempt budget; exhausting it raises EmbeddingExhaustedError
- anything else propagates
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import httpx
from loguru import logger
from openai import APIConnectionError, AsyncOpenAI, BadRequestError, RateLimitError
from pydantic import BaseModel, Field

from content_index.chunking import truncate_words
from content_index.errors import (
    EmbeddingError,
    EmbeddingExhaustedError,
    EmbeddingLengthError,
    EmbeddingTransientError,
    IndexDimensionMismatch,
)

LENGTH_ERROR_MARKERS = (
    "input length exceeds maximum context length",
    "maximum context length",
    "too many tokens",
)


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier with provider prefix (e.g., "ollama/all-minilm:l6-v2")
        version: Version tag for reindexing triggers (e.g., "v1")
        dimensions: Expected embedding dimensionality
        base_url: Model server URL (Ollama)
        batch_size: Number of texts to embed per API call
        max_attempts: Attempts per text before the chunk is dropped
        shrink_factor: Fraction of words kept after a length failure
        timeout_seconds: Per-call timeout
        backoff_seconds: Base delay before retrying a transient failure
        api_key: API key for external services (set via env var)
    """

    model: str
    version: str = "v1"
    dimensions: int = Field(ge=1, le=4096)
    base_url: str = "http://localhost:11434"
    batch_size: int = Field(default=100, ge=1, le=500)
    max_attempts: int = Field(default=5, ge=1, le=20)
    shrink_factor: float = Field(default=0.8, gt=0.0, lt=1.0)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    backoff_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    api_key: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts (same order as inputs)."""
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...


def is_length_error(message: str) -> bool:
    """Return True if a provider error message reports an over-long input."""
    lowered = message.lower()
    return any(marker in lowered for marker in LENGTH_ERROR_MARKERS)


def _check_dimensions(vector: list[float], expected: int) -> list[float]:
    if len(vector) != expected:
        raise IndexDimensionMismatch(expected, len(vector))
    return vector


class OllamaEmbedding:
    """Embedding client for an Ollama model server (``/api/embeddings``)."""

    def __init__(self, config: EmbeddingConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.model_name = config.model.removeprefix("ollama/")
        self.client = http_client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds
        )

    async def embed_single(self, text: str) -> list[float]:
        """Embed one text, classifying server failures.

        Raises:
            EmbeddingLengthError: Server reports the input exceeds the context length
            EmbeddingTransientError: Timeout, connection failure or 5xx response
            EmbeddingError: Server answered without an embedding
            httpx.HTTPStatusError: Other 4xx responses
        """
        try:
            response = await self.client.post(
                "/api/embeddings", json={"model": self.model_name, "prompt": text}
            )
        except httpx.TimeoutException as e:
            raise EmbeddingTransientError(f"Timeout embedding text: {e}") from e
        except httpx.TransportError as e:
            raise EmbeddingTransientError(f"Transport error embedding text: {e}") from e

        if response.is_error:
            body = response.text
            if is_length_error(body):
                raise EmbeddingLengthError(body.strip())
            if response.status_code >= 500:
                raise EmbeddingTransientError(
                    f"Model server returned {response.status_code}: {body.strip()}"
                )
            response.raise_for_status()

        data = response.json()
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingError(f"No embedding found in response for model {self.model_name}")

        return _check_dimensions([float(v) for v in embedding], self.config.dimensions)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts one request at a time (the endpoint takes a single prompt)."""
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")
        return [await self.embed_single(text) for text in texts]

    async def aclose(self) -> None:
        await self.client.aclose()


class OpenAIEmbedding:
    """OpenAI embedding client with error classification and batching."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        # Retries are owned by ResilientEmbedder, not the SDK
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_name = config.model.removeprefix("openai/")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts.

        Raises:
            ValueError: If batch size exceeds config limit
            EmbeddingLengthError: An input exceeds the model's context length
            EmbeddingTransientError: Timeout, connection failure or rate limit
            IndexDimensionMismatch: Model returned vectors of the wrong size
        """
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(model=self.model_name, input=texts)
        except APIConnectionError as e:
            raise EmbeddingTransientError(f"Connection error embedding batch: {e}") from e
        except RateLimitError as e:
            raise EmbeddingTransientError(f"Rate limited: {e}") from e
        except BadRequestError as e:
            if is_length_error(str(e)):
                raise EmbeddingLengthError(str(e)) from e
            raise

        embeddings = [item.embedding for item in response.data]
        for emb in embeddings:
            _check_dimensions(emb, self.config.dimensions)

        logger.debug(f"Embedded {len(texts)} texts with {self.model_name}")
        return embeddings

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create embedding client based on model prefix.

    Example:
        >>> config = EmbeddingConfig(model="ollama/all-minilm:l6-v2", dimensions=384)
        >>> client = create_embedding_client(config)
    """
    if config.model.startswith("ollama/"):
        return OllamaEmbedding(config)
    elif config.model.startswith("openai/"):
        return OpenAIEmbedding(config)
    else:
        raise ValueError(
            f"Unknown model prefix in {config.model!r}. Expected 'ollama/' or 'openai/'"
        )


@dataclass(frozen=True)
class EmbeddingOutcome:
    """Result of a successful resilient embedding.

    Attributes:
        text: The text actually embedded (shorter than the input after truncation)
        vector: Embedding vector
        attempts: Number of calls made, including the successful one
        truncated: Whether the text was shortened to fit the model
    """

    text: str
    vector: list[float]
    attempts: int
    truncated: bool


class ResilientEmbedder:
    """Wraps an embedding client with bounded, failure-aware retries.

    Document and query embeddings both go through the same client, so every
    vector lives in one embedding space.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        max_attempts: int = 5,
        shrink_factor: float = 0.8,
        timeout_seconds: float = 30.0,
        backoff_seconds: float = 0.0,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.client = client
        self.max_attempts = max_attempts
        self.shrink_factor = shrink_factor
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_config(
        cls, config: EmbeddingConfig, client: EmbeddingClient | None = None
    ) -> "ResilientEmbedder":
        return cls(
            client or create_embedding_client(config),
            max_attempts=config.max_attempts,
            shrink_factor=config.shrink_factor,
            timeout_seconds=config.timeout_seconds,
            backoff_seconds=config.backoff_seconds,
        )

    async def embed(self, text: str) -> EmbeddingOutcome:
        """Embed text, shrinking it on length failures and retrying on timeouts.

        Raises:
            EmbeddingExhaustedError: All attempts failed with length/transient errors
        """
        current = text
        for attempt in range(1, self.max_attempts + 1):
            try:
                vector = await asyncio.wait_for(
                    self.client.embed_single(current), timeout=self.timeout_seconds
                )
                return EmbeddingOutcome(
                    text=current, vector=vector, attempts=attempt, truncated=current != text
                )

            except asyncio.TimeoutError:
                logger.warning(
                    f"Embedding timed out after {self.timeout_seconds}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                await self._backoff(attempt)

            except EmbeddingTransientError as e:
                logger.warning(
                    f"Transient embedding failure (attempt {attempt}/{self.max_attempts}): {e}"
                )
                await self._backoff(attempt)

            except EmbeddingLengthError:
                word_count = len(current.split())
                new_length = max(int(word_count * self.shrink_factor), 1)
                logger.warning(
                    f"Chunk too long (attempt {attempt}/{self.max_attempts}): "
                    f"trimming from {word_count} to {new_length} words"
                )
                current = truncate_words(current, new_length)

        raise EmbeddingExhaustedError(
            f"Failed to embed text after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            context={"words": len(text.split())},
        )

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query with the same model used for documents."""
        outcome = await self.embed(text)
        return outcome.vector

    async def _backoff(self, attempt: int) -> None:
        if self.backoff_seconds and attempt < self.max_attempts:
            await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
