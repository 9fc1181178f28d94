"""Build-state tracking for the persisted vector index.

Stores a compact record of the indexing run that produced the current
snapshot so callers can decide whether appending to it is safe or a rebuild
is needed, and so retrieval can verify it re-chunks sources with the exact
parameters used at index time.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from content_index.chunking import ChunkingConfig
from content_index.embedding import EmbeddingConfig
from content_index.models import BuildRecord


def _safe_subset(chunking: ChunkingConfig, embedding: EmbeddingConfig) -> dict[str, Any]:
    """Extract a deterministic, non-secret subset of configuration for hashing."""
    # Only fields that change chunk boundaries or the embedding space
    return {
        "chunking": {
            "chunk_size": chunking.chunk_size,
            "max_words": chunking.max_words,
        },
        "embedding": {
            "model": embedding.model,
            "version": embedding.version,
            "dimensions": embedding.dimensions,
        },
    }


def compute_config_fingerprint(chunking: ChunkingConfig, embedding: EmbeddingConfig) -> str:
    """Compute a stable fingerprint for the index-shaping configuration.

    Returns a hex-encoded SHA256 hash of a canonical JSON representation
    of a secret-free subset of the configuration.
    """
    subset = _safe_subset(chunking, embedding)
    payload = json.dumps(subset, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(payload).hexdigest()


def load_build_record(path: Path) -> BuildRecord | None:
    """Load build record from path if it exists and parses, else return None."""
    if not path.exists():
        return None
    try:
        return BuildRecord.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError):
        return None


def should_rebuild(record: BuildRecord, current_fingerprint: str, embedding_version: str) -> bool:
    """Return True if appending to the recorded index would mix configurations."""
    if record.config_fingerprint != current_fingerprint:
        return True
    if record.embedding_version != embedding_version:
        return True
    return False


def build_record_from_config(
    chunking: ChunkingConfig,
    embedding: EmbeddingConfig,
    vector_count: int,
    source_dirs: list[str] | None = None,
) -> BuildRecord:
    """Create a BuildRecord for the provided configuration using current time."""
    return BuildRecord(
        built_at=datetime.now(UTC),
        embedding_model=embedding.model,
        embedding_version=embedding.version,
        dimensions=embedding.dimensions,
        chunking_fingerprint=chunking.fingerprint(),
        config_fingerprint=compute_config_fingerprint(chunking, embedding),
        vector_count=vector_count,
        chunk_size=chunking.chunk_size,
        max_words=chunking.max_words,
        source_dirs=list(source_dirs or []),
    )


def chunking_from_record(record: BuildRecord | None) -> ChunkingConfig | None:
    """Chunking parameters recorded at index time, if the record carries them."""
    if record is None or record.chunk_size is None:
        return None
    chunking = ChunkingConfig(chunk_size=record.chunk_size, max_words=record.max_words)
    if chunking.fingerprint() != record.chunking_fingerprint:
        return None
    return chunking
