"""Exception hierarchy for the content index.

Every error raised by the package derives from ``ContentIndexError`` so callers
can catch the whole family at an orchestration boundary. Each error carries a
message, an optional numeric code and an optional context object for logging.

Recoverability:
    - ChunkingError: skip the document, continue the run
    - EmbeddingLengthError / EmbeddingTransientError: retried by the embedder
    - EmbeddingExhaustedError: drop the chunk, count it, continue
    - RetrievalLookupError: skip that result, continue the request
    - IndexDimensionMismatch / SnapshotIntegrityError / ConfigurationError:
      structural, abort the current run
"""

from __future__ import annotations

from typing import Any


class ContentIndexError(Exception):
    """Base exception for all content index errors."""

    def __init__(self, message: str, code: int | None = None, context: Any = None):
        self.message = message
        self.code = code
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"{self.message} (Code: {self.code})"
        return self.message


class ChunkingError(ContentIndexError):
    """Source document is empty or malformed and cannot be chunked."""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message, 1001, context)


class EmbeddingError(ContentIndexError):
    """Base class for embedding failures."""


class EmbeddingLengthError(EmbeddingError):
    """Model rejected the input because it is too long."""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message, 2001, context)


class EmbeddingTransientError(EmbeddingError):
    """Timeout or I/O failure talking to the model server."""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message, 2002, context)


class EmbeddingExhaustedError(EmbeddingError):
    """All retry attempts for a text were used up."""

    def __init__(self, message: str, attempts: int, context: Any = None):
        self.attempts = attempts
        super().__init__(message, 2003, context)


class IndexDimensionMismatch(ContentIndexError):
    """A vector's dimension does not match its collection."""

    def __init__(self, expected: int, actual: int, context: Any = None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} dimensions, got {actual}", 3001, context)


class SnapshotIntegrityError(ContentIndexError):
    """Persisted snapshot and document map are inconsistent."""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message, 3002, context)


class RetrievalLookupError(ContentIndexError):
    """Search returned an ordinal the document map cannot resolve."""

    def __init__(self, ordinal: int, size: int):
        self.ordinal = ordinal
        super().__init__(
            f"Ordinal {ordinal} out of range for document map of size {size}", 4001
        )


class ConfigurationError(ContentIndexError):
    """Required configuration is missing or inconsistent."""

    def __init__(self, message: str, context: Any = None):
        super().__init__(message, 5001, context)
