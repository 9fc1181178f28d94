"""Test doubles for the model server shared by unit and integration tests."""

import pytest

from content_index.errors import EmbeddingLengthError

KEYWORDS = ("ai", "blog", "seo", "travel")


class KeywordEmbeddingClient:
    """Deterministic embeddings: one dimension per keyword, plus a bias term.

    Each keyword dimension counts the keyword's occurrences in the text, so
    texts about the same topic land close together.
    """

    def __init__(self, keywords: tuple[str, ...] = KEYWORDS):
        self.keywords = keywords
        self.dim = len(keywords) + 1
        self.calls: list[str] = []

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        words = text.lower().split()
        return [float(words.count(k)) for k in self.keywords] + [1.0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]


class LengthLimitedClient(KeywordEmbeddingClient):
    """Rejects texts longer than ``max_words`` like a model with a small context."""

    def __init__(self, max_words: int):
        super().__init__()
        self.max_words = max_words

    async def embed_single(self, text: str) -> list[float]:
        if len(text.split()) > self.max_words:
            self.calls.append(text)
            raise EmbeddingLengthError("the input length exceeds the context length")
        return await super().embed_single(text)


@pytest.fixture
def keyword_client() -> KeywordEmbeddingClient:
    return KeywordEmbeddingClient()


@pytest.fixture
def embedding_dim() -> int:
    return len(KEYWORDS) + 1


@pytest.fixture
def length_limited_client():
    """Factory for clients that reject texts over a word limit."""
    return LengthLimitedClient
