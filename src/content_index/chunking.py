"""Word-window text chunking for semantic indexing.

Splits text into consecutive, non-overlapping windows of whitespace-delimited
words. An optional hard cap trims any chunk that still exceeds the embedding
model's word limit.
All chunking is deterministic: same input + config → same chunks. Retrieval
relies on this to recompute chunk text that was not persisted.
"""

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import Protocol

from loguru import logger


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Target chunk size in words
        max_words: Optional hard cap applied after splitting; words beyond it
            are dropped from the tail of the chunk
    """

    chunk_size: int = 50
    max_words: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.max_words is not None and self.max_words <= 0:
            raise ValueError(f"max_words must be positive, got {self.max_words}")

    def fingerprint(self) -> str:
        """Return a stable hash of the parameters that shape chunk boundaries."""
        payload = json.dumps(asdict(self), sort_keys=True, separators=(",", ":")).encode()
        return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True)
class Chunk:
    """A single text chunk with provenance.

    Attributes:
        source_id: Identifier of the source document
        index: 1-based position of the chunk within its document
        total_chunks: Number of chunks the document was split into
        text: Chunk text (words joined by single spaces)
        word_count: Number of words in ``text``
    """

    source_id: str
    index: int
    total_chunks: int
    text: str
    word_count: int

    def __post_init__(self) -> None:
        """Validate chunk properties."""
        if not self.text:
            raise ValueError("Chunk text cannot be empty")
        if self.index < 1 or self.index > self.total_chunks:
            raise ValueError(
                f"Invalid chunk position: index={self.index}, total={self.total_chunks}"
            )
        if self.word_count <= 0:
            raise ValueError(f"word_count must be positive, got {self.word_count}")


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    config: ChunkingConfig

    def chunk(self, text: str, source_id: str) -> list[Chunk]:
        """Split text into ordered chunks."""
        ...


def split_words(text: str, chunk_size: int) -> list[list[str]]:
    """Split text into consecutive word windows of ``chunk_size`` words.

    Every window but possibly the last holds exactly ``chunk_size`` words.
    Concatenating the windows reproduces the word sequence of ``text``.

    Example:
        >>> [len(w) for w in split_words("word " * 120, 50)]
        [50, 50, 20]
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    words = text.split()
    return [words[i : i + chunk_size] for i in range(0, len(words), chunk_size)]


def truncate_words(text: str, word_limit: int) -> str:
    """Keep the first ``word_limit`` words of text (at least one)."""
    words = text.split()
    return " ".join(words[: max(word_limit, 1)])


class WordChunker:
    """Whitespace word-window chunker with an optional hard cap."""

    def __init__(self, config: ChunkingConfig | None = None):
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, source_id: str) -> list[Chunk]:
        """Split text into chunks tagged with their position in the document.

        Args:
            text: Raw document text
            source_id: Identifier recorded as the chunk's provenance

        Returns:
            Ordered list of chunks; empty when text has no words
        """
        windows = split_words(text or "", self.config.chunk_size)
        total = len(windows)
        chunks: list[Chunk] = []

        for position, words in enumerate(windows, start=1):
            cap = self.config.max_words
            if cap is not None and len(words) > cap:
                logger.warning(
                    f"Trimming chunk {position} of {source_id} from {len(words)} to {cap} words"
                )
                words = words[:cap]

            chunks.append(
                Chunk(
                    source_id=source_id,
                    index=position,
                    total_chunks=total,
                    text=" ".join(words),
                    word_count=len(words),
                )
            )

        return chunks


def chunk_text(
    text: str,
    source_id: str = "text",
    chunk_size: int = 50,
    max_words: int | None = None,
) -> list[Chunk]:
    """Convenience function to chunk text with a one-off config.

    Example:
        >>> chunks = chunk_text("one two three four five", chunk_size=2)
        >>> [c.text for c in chunks]
        ['one two', 'three four', 'five']
    """
    return WordChunker(ChunkingConfig(chunk_size=chunk_size, max_words=max_words)).chunk(
        text, source_id
    )
