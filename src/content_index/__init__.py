"""Semantic indexing, retrieval and label analytics for scraped web content.

Architecture:
    - chunking: Word-count chunking with an optional hard cap
    - embedding: Ollama/OpenAI embedding clients and the resilient embedder
    - index: Exhaustive flat L2 index with JSON snapshots
    - retrieval: Query embedding, search and document-map resolution
    - point_store / labels: Per-label points merged across documents
    - analytics: Label frequency, centroid similarity and gap pairs
    - engine: The ``index``/``retrieve``/``query``/``report`` operations

Usage:
    >>> from content_index.config import load_config
    >>> from content_index.engine import ContentEngine, build_context
    >>> engine = ContentEngine(build_context(load_config("default")))
    >>> response = await engine.retrieve("how do I start a blog?", k=5)
"""

__version__ = "0.1.0"

from content_index.models import (
    AggregateReport,
    BuildRecord,
    DocumentMapEntry,
    IndexingReport,
    RetrievalResponse,
    RetrievedChunk,
)

__all__ = [
    "AggregateReport",
    "BuildRecord",
    "DocumentMapEntry",
    "IndexingReport",
    "RetrievalResponse",
    "RetrievedChunk",
]
