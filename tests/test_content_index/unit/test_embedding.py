"""Unit tests for embedding clients and the resilient embedder."""

import asyncio

import httpx
import pytest
import respx
from httpx import Response

from content_index.embedding import (
    EmbeddingConfig,
    OllamaEmbedding,
    OpenAIEmbedding,
    ResilientEmbedder,
    create_embedding_client,
    is_length_error,
)
from content_index.errors import (
    EmbeddingError,
    EmbeddingExhaustedError,
    EmbeddingLengthError,
    EmbeddingTransientError,
    IndexDimensionMismatch,
)

OLLAMA_URL = "http://localhost:11434/api/embeddings"
OPENAI_URL = "https://api.openai.com/v1/embeddings"


@pytest.fixture
def ollama_config() -> EmbeddingConfig:
    return EmbeddingConfig(model="ollama/all-minilm:l6-v2", dimensions=4, timeout_seconds=5.0)


@pytest.fixture
def openai_config() -> EmbeddingConfig:
    return EmbeddingConfig(
        model="openai/text-embedding-3-small",
        dimensions=4,
        timeout_seconds=5.0,
        api_key="sk-test-key",
    )


class TestEmbeddingConfig:
    """Tests for EmbeddingConfig validation."""

    def test_defaults(self, ollama_config):
        assert ollama_config.max_attempts == 5
        assert ollama_config.shrink_factor == 0.8
        assert ollama_config.version == "v1"

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            EmbeddingConfig(model="ollama/x", dimensions=0)

        with pytest.raises(ValueError):
            EmbeddingConfig(model="ollama/x", dimensions=5000)

    def test_invalid_shrink_factor(self):
        with pytest.raises(ValueError):
            EmbeddingConfig(model="ollama/x", dimensions=4, shrink_factor=1.0)


class TestFactory:
    def test_ollama_prefix(self, ollama_config):
        assert isinstance(create_embedding_client(ollama_config), OllamaEmbedding)

    def test_openai_prefix(self, openai_config):
        assert isinstance(create_embedding_client(openai_config), OpenAIEmbedding)

    def test_unknown_prefix(self):
        with pytest.raises(ValueError, match="Unknown model prefix"):
            create_embedding_client(EmbeddingConfig(model="cohere/embed", dimensions=4))


def test_is_length_error():
    assert is_length_error("the input length exceeds maximum context length")
    assert is_length_error("This model's maximum context length is 8192 tokens")
    assert not is_length_error("model not found")


class TestOllamaEmbedding:
    """Tests for the Ollama client's request and error classification."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_single_success(self, ollama_config):
        route = respx.post(OLLAMA_URL).mock(
            return_value=Response(200, json={"embedding": [0.1, 0.2, 0.3, 0.4]})
        )

        client = OllamaEmbedding(ollama_config)
        vector = await client.embed_single("hello world")

        assert vector == [0.1, 0.2, 0.3, 0.4]
        sent = route.calls.last.request
        assert b'"model":"all-minilm:l6-v2"' in sent.content.replace(b" ", b"")
        await client.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_length_error_body(self, ollama_config):
        respx.post(OLLAMA_URL).mock(
            return_value=Response(
                500, json={"error": "the input length exceeds maximum context length"}
            )
        )

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(EmbeddingLengthError):
            await client.embed_single("too long")

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_is_transient(self, ollama_config):
        respx.post(OLLAMA_URL).mock(return_value=Response(503, text="overloaded"))

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(EmbeddingTransientError):
            await client.embed_single("text")

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_is_transient(self, ollama_config):
        respx.post(OLLAMA_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(EmbeddingTransientError):
            await client.embed_single("text")

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_propagates(self, ollama_config):
        respx.post(OLLAMA_URL).mock(return_value=Response(404, json={"error": "model not found"}))

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(httpx.HTTPStatusError):
            await client.embed_single("text")

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_embedding(self, ollama_config):
        respx.post(OLLAMA_URL).mock(return_value=Response(200, json={"embedding": []}))

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(EmbeddingError, match="No embedding"):
            await client.embed_single("text")

    @pytest.mark.asyncio
    @respx.mock
    async def test_dimension_mismatch(self, ollama_config):
        respx.post(OLLAMA_URL).mock(return_value=Response(200, json={"embedding": [0.1, 0.2]}))

        client = OllamaEmbedding(ollama_config)
        with pytest.raises(IndexDimensionMismatch, match="Expected 4 dimensions, got 2"):
            await client.embed_single("text")


class TestOpenAIEmbedding:
    """Tests for the OpenAI client's error classification."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_batch_success(self, openai_config):
        respx.post(OPENAI_URL).mock(
            return_value=Response(
                200,
                json={
                    "object": "list",
                    "data": [
                        {"object": "embedding", "embedding": [0.1] * 4, "index": 0},
                        {"object": "embedding", "embedding": [0.2] * 4, "index": 1},
                    ],
                    "model": "text-embedding-3-small",
                    "usage": {"prompt_tokens": 4, "total_tokens": 4},
                },
            )
        )

        client = OpenAIEmbedding(openai_config)
        vectors = await client.embed_batch(["Text 1", "Text 2"])

        assert len(vectors) == 2
        assert vectors[0] != vectors[1]

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_is_transient(self, openai_config):
        respx.post(OPENAI_URL).mock(
            return_value=Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )

        client = OpenAIEmbedding(openai_config)
        with pytest.raises(EmbeddingTransientError):
            await client.embed_single("text")

    @pytest.mark.asyncio
    @respx.mock
    async def test_context_length_is_length_error(self, openai_config):
        respx.post(OPENAI_URL).mock(
            return_value=Response(
                400,
                json={
                    "error": {
                        "message": "This model's maximum context length is 8192 tokens",
                        "type": "invalid_request_error",
                    }
                },
            )
        )

        client = OpenAIEmbedding(openai_config)
        with pytest.raises(EmbeddingLengthError):
            await client.embed_single("text")

    @pytest.mark.asyncio
    async def test_batch_size_exceeded(self, openai_config):
        client = OpenAIEmbedding(openai_config)
        with pytest.raises(ValueError, match="Batch size .* exceeds limit"):
            await client.embed_batch(["text"] * 101)


class HangingOnceClient:
    """Hangs on the first call, answers afterwards."""

    def __init__(self):
        self.calls: list[str] = []

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        if len(self.calls) == 1:
            await asyncio.sleep(10)
        return [1.0, 0.0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]


class FlakyClient:
    """Raises a transient error for the first ``failures`` calls."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def embed_single(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise EmbeddingTransientError("connection reset")
        return [0.5, 0.5]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]


class TestResilientEmbedder:
    """Tests for truncation, retry and exhaustion behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, keyword_client):
        embedder = ResilientEmbedder(keyword_client)
        outcome = await embedder.embed("ai blog")

        assert outcome.attempts == 1
        assert outcome.truncated is False
        assert outcome.text == "ai blog"

    @pytest.mark.asyncio
    async def test_length_error_truncates_and_retries(self, length_limited_client):
        """A too-long text is retried with 80% of its words."""
        client = length_limited_client(max_words=8)
        text = " ".join(f"w{i}" for i in range(10))

        outcome = await ResilientEmbedder(client).embed(text)

        assert outcome.attempts == 2
        assert outcome.truncated is True
        assert outcome.text == " ".join(f"w{i}" for i in range(8))
        assert client.calls == [text, outcome.text]

    @pytest.mark.asyncio
    async def test_always_too_long_is_exhausted(self, length_limited_client):
        """Five length failures in a row exhaust the attempt budget."""
        client = length_limited_client(max_words=0)
        text = " ".join(f"w{i}" for i in range(10))

        with pytest.raises(EmbeddingExhaustedError) as exc_info:
            await ResilientEmbedder(client, max_attempts=5).embed(text)

        assert exc_info.value.attempts == 5
        assert [len(t.split()) for t in client.calls] == [10, 8, 6, 4, 3]

    @pytest.mark.asyncio
    async def test_timeout_retries_without_truncation(self):
        client = HangingOnceClient()
        embedder = ResilientEmbedder(client, timeout_seconds=0.05)

        outcome = await embedder.embed("some words here")

        assert outcome.attempts == 2
        assert outcome.truncated is False
        assert client.calls == ["some words here", "some words here"]

    @pytest.mark.asyncio
    async def test_transient_errors_share_budget(self):
        client = FlakyClient(failures=2)
        outcome = await ResilientEmbedder(client, max_attempts=3).embed("text")
        assert outcome.attempts == 3

        with pytest.raises(EmbeddingExhaustedError):
            await ResilientEmbedder(FlakyClient(failures=3), max_attempts=3).embed("text")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        class BrokenClient:
            async def embed_single(self, text: str) -> list[float]:
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await ResilientEmbedder(BrokenClient()).embed("text")

    @pytest.mark.asyncio
    async def test_embed_query_uses_same_client(self, keyword_client):
        embedder = ResilientEmbedder(keyword_client)
        document = await embedder.embed("ai ai blog")
        query = await embedder.embed_query("ai ai blog")
        assert query == document.vector

    def test_from_config(self, ollama_config, keyword_client):
        embedder = ResilientEmbedder.from_config(ollama_config, client=keyword_client)
        assert embedder.client is keyword_client
        assert embedder.max_attempts == 5
        assert embedder.shrink_factor == 0.8
