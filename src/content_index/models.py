"""Pydantic models for content index data structures.

All data crossing a persistence or service boundary is validated against
these schemas. Wire names of the persisted snapshot and document map
(``nbDocs``, ``flatArray``, ``chunkIndex``, ``totalChunks``) are kept as
aliases so existing files load unchanged.
"""

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentMapEntry(BaseModel):
    """Provenance of one indexed chunk, stored at the chunk's ordinal.

    Attributes:
        source: Source document identifier
        chunk_index: 1-based chunk position within the source
        total_chunks: Number of chunks the source was split into
        text: Chunk text when persisted inline, else None
    """

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(min_length=1)
    chunk_index: int = Field(alias="chunkIndex", ge=1)
    total_chunks: int = Field(alias="totalChunks", ge=1)
    text: str | None = None

    @model_validator(mode="after")
    def validate_position(self) -> "DocumentMapEntry":
        if self.chunk_index > self.total_chunks:
            raise ValueError(
                f"chunkIndex {self.chunk_index} exceeds totalChunks {self.total_chunks}"
            )
        return self


class IndexSnapshot(BaseModel):
    """Serialized flat index: row-major vectors in ordinal order.

    Attributes:
        dim: Vector dimensionality
        nb_docs: Number of vectors
        flat_array: Concatenation of all vectors (length dim * nb_docs)
    """

    model_config = ConfigDict(populate_by_name=True)

    dim: int = Field(ge=1)
    nb_docs: int = Field(alias="nbDocs", ge=0)
    flat_array: list[float] = Field(alias="flatArray", default_factory=list)

    @model_validator(mode="after")
    def validate_length(self) -> "IndexSnapshot":
        expected = self.dim * self.nb_docs
        if len(self.flat_array) != expected:
            raise ValueError(
                f"flatArray has {len(self.flat_array)} values, expected dim*nbDocs={expected}"
            )
        return self


class BuildRecord(BaseModel):
    """Record of the indexing run that produced the current snapshot.

    Attributes:
        built_at: Timestamp of the run
        embedding_model: Model identifier used for all vectors
        embedding_version: Embedding version tag
        dimensions: Vector dimensionality
        chunking_fingerprint: Hash of the chunking parameters used at index time
        config_fingerprint: Hash of chunking + embedding parameters
        vector_count: Number of vectors in the snapshot
        chunk_size: Words per chunk at index time
        max_words: Word cap per chunk at index time
        source_dirs: Directories the indexed documents were read from
    """

    built_at: datetime
    embedding_model: str
    embedding_version: str
    dimensions: int = Field(ge=1)
    chunking_fingerprint: str
    config_fingerprint: str
    vector_count: int = Field(default=0, ge=0)
    chunk_size: int | None = Field(default=None, ge=1)
    max_words: int | None = Field(default=None, ge=1)
    source_dirs: list[str] = Field(default_factory=list)


class RetrievedChunk(BaseModel):
    """A single retrieval result."""

    ordinal: int = Field(ge=0)
    text: str
    source_id: str
    chunk_index: int = Field(ge=1)
    total_chunks: int = Field(ge=1)
    distance: float = Field(ge=0.0)


class RetrievalResponse(BaseModel):
    """Ordered retrieval results for one query; empty when nothing resolved."""

    query: str
    results: list[RetrievedChunk] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.results


class IndexingReport(BaseModel):
    """Counts reported at the end of an indexing run.

    Attributes:
        processed: Documents that produced at least one chunk
        skipped: Documents skipped (empty or unusable content)
        failed: Documents whose loading or chunking raised
        chunks_indexed: Chunks appended to the index
        chunks_dropped: Chunks dropped after exhausting embedding attempts
        chunks_failed: Chunks that failed with a non-retryable error
    """

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks_indexed: int = 0
    chunks_dropped: int = 0
    chunks_failed: int = 0


class Contribution(BaseModel):
    """One document's evidence for a label."""

    text: str
    source_url: str


class LabeledPoint(BaseModel):
    """A label's point in the point store.

    The vector is the label's first-seen semantic position; later
    contributions are appended without re-embedding.
    """

    id: str
    label: str = Field(min_length=1)
    vector: list[float] | None = None
    contributions: list[Contribution] = Field(default_factory=list)

    @field_validator("vector")
    @classmethod
    def validate_vector_values(cls, v: list[float] | None) -> list[float] | None:
        """Ensure vector contains valid finite floats."""
        if v is None:
            return v
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v

    @property
    def source_urls(self) -> list[str]:
        return list(dict.fromkeys(c.source_url for c in self.contributions))


class PointHit(BaseModel):
    """A point store search hit (higher score is more similar)."""

    id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    score: float


class PageRecord(BaseModel):
    """An enriched page: its URL and its field data (summary, interests, ...).

    Attributes:
        url: Page URL, used as the page's identity in label contributions
        source: Document id the page's text was indexed under, if any
        data: Field data produced by enrichment
    """

    url: str = Field(min_length=1)
    source: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def document_id(self) -> str:
        return self.source or self.url


class FieldTotal(BaseModel):
    field: str
    total: int = Field(ge=0)


class LabelCount(BaseModel):
    label: str
    count: int = Field(ge=0)
    percentage: float = Field(ge=0.0)


class LabelPair(BaseModel):
    """Two labels (lexically ordered) and their similarity."""

    first: str
    second: str
    similarity: float


class FieldAnalytics(BaseModel):
    """Aggregate analytics for one label field (e.g. "interests").

    Attributes:
        field: Page field name
        total: Number of label occurrences across pages
        label_counts: All labels, most frequent first
        top_labels: Top-K most frequent labels
        underserved_labels: Bottom-K labels with count > 0, least frequent first
        metric: Similarity strategy used ("cosine" or "jaccard")
        similar_pairs: Most similar label pairs (redundancy candidates)
        gap_pairs: Least similar co-occurring label pairs (content bridges)
    """

    field: str
    total: int = Field(ge=0)
    label_counts: list[LabelCount] = Field(default_factory=list)
    top_labels: list[LabelCount] = Field(default_factory=list)
    underserved_labels: list[LabelCount] = Field(default_factory=list)
    metric: str
    similar_pairs: list[LabelPair] = Field(default_factory=list)
    gap_pairs: list[LabelPair] = Field(default_factory=list)


class AggregateReport(BaseModel):
    """Aggregate analytics across all label fields of all pages."""

    page_count: int = Field(ge=0)
    page_field_totals: list[FieldTotal] = Field(default_factory=list)
    fields: dict[str, FieldAnalytics] = Field(default_factory=dict)


class LabelContextReport(BaseModel):
    """Counts from one label-context ingestion run."""

    collection: str
    pages_processed: int = 0
    pages_failed: int = 0
    items_merged: int = 0
    items_skipped: int = 0
    page_labels: dict[str, list[str]] = Field(default_factory=dict)
