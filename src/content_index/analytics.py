"""Aggregate label analytics over enriched pages.

Pages carry array-valued label fields (``interests``, ``segments``, ...).
For each field this module counts labels, ranks them by frequency and compares
labels pairwise, either by cosine similarity of their centroids (mean of the
vectors of the documents carrying the label) or, when fewer than two labels
have a centroid, by Jaccard overlap of the documents carrying them.
"""

import dataclasses
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from itertools import combinations
from typing import Any, Protocol

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from content_index.models import (
    AggregateReport,
    FieldAnalytics,
    FieldTotal,
    LabelCount,
    LabelPair,
    PageRecord,
)

LABEL_OBJECT_KEYS = ("interest", "label")


class AnalyticsConfig(BaseModel):
    """Ranking limits for aggregate reports.

    Attributes:
        top_k: Number of most and least frequent labels reported
        pair_limit: Number of similar and gap pairs reported
        frequent_label_limit: Labels considered for pairwise comparison
        min_contribution_chars: Minimum text length of a merged label contribution
    """

    top_k: int = Field(default=5, ge=1)
    pair_limit: int = Field(default=5, ge=1)
    frequent_label_limit: int = Field(default=20, ge=2)
    min_contribution_chars: int = Field(default=20, ge=0)


def extract_labels(value: Any, field: str) -> list[str]:
    """Labels of one page field: strings, or objects keyed by interest/label/field.

    Example:
        >>> extract_labels(["ai", {"interest": " seo "}, "[1, 2]"], "interests")
        ['ai', 'seo']
    """
    if not isinstance(value, list):
        return []

    labels: list[str] = []
    for item in value:
        label = None
        if isinstance(item, str):
            label = item
        elif isinstance(item, dict):
            label = next(
                (item[k] for k in (*LABEL_OBJECT_KEYS, field) if isinstance(item.get(k), str)),
                None,
            )
        if label is None:
            continue
        label = label.strip()
        # Serialized structures leaking out of a completion are not labels
        if not label or label.startswith(("[", "{")):
            continue
        labels.append(label)
    return labels


@dataclasses.dataclass
class FieldCounts:
    """Raw per-field tallies collected from pages."""

    totals: dict[str, int] = dataclasses.field(default_factory=dict)
    labels: dict[str, Counter] = dataclasses.field(default_factory=dict)
    label_docs: dict[str, dict[str, set[str]]] = dataclasses.field(default_factory=dict)


def count_fields(pages: Iterable[PageRecord], ignore_fields: Sequence[str] = ()) -> FieldCounts:
    """Tally array-valued fields across pages.

    ``totals`` counts array items per field (as stored, before label
    filtering); ``labels`` counts usable labels; ``label_docs`` maps each label
    to the ids of the documents carrying it.
    """
    ignored = set(ignore_fields)
    totals: dict[str, int] = defaultdict(int)
    labels: dict[str, Counter] = defaultdict(Counter)
    label_docs: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))

    for page in pages:
        for field, value in page.data.items():
            if field in ignored or not isinstance(value, list):
                continue
            totals[field] += len(value)
            for label in extract_labels(value, field):
                labels[field][label] += 1
                label_docs[field][label].add(page.document_id)

    return FieldCounts(
        totals=dict(totals),
        labels=dict(labels),
        label_docs={f: dict(docs) for f, docs in label_docs.items()},
    )


def label_counts(counter: Mapping[str, int], total: int) -> list[LabelCount]:
    """Labels with percentage of the field total, most frequent first."""
    ranked = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        LabelCount(
            label=label,
            count=count,
            percentage=round(count / total * 100, 1) if total else 0.0,
        )
        for label, count in ranked
    ]


def top_labels(counts: Sequence[LabelCount], k: int) -> list[LabelCount]:
    return sorted(counts, key=lambda c: (-c.count, c.label))[:k]


def underserved_labels(counts: Sequence[LabelCount], k: int) -> list[LabelCount]:
    """Least frequent labels that still occur at least once."""
    present = [c for c in counts if c.count > 0]
    return sorted(present, key=lambda c: (c.count, c.label))[:k]


def compute_centroids(
    label_docs: Mapping[str, set[str]], doc_vectors: Mapping[str, Sequence[float]]
) -> dict[str, np.ndarray]:
    """Componentwise mean of each label's contributing document vectors.

    Labels none of whose documents has a vector are left out.
    """
    centroids: dict[str, np.ndarray] = {}
    for label, docs in label_docs.items():
        vectors = [doc_vectors[d] for d in sorted(docs) if d in doc_vectors]
        if not vectors:
            continue
        centroids[label] = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
    return centroids


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class Similarity(Protocol):
    """Pairwise label similarity strategy."""

    name: str

    def supports(self, label: str) -> bool:
        """Whether the label can be compared under this strategy."""
        ...

    def similarity(self, first: str, second: str) -> float: ...


class CosineSimilarity:
    """Cosine similarity between label centroids."""

    name = "cosine"

    def __init__(self, centroids: Mapping[str, np.ndarray]):
        self.centroids = centroids

    def supports(self, label: str) -> bool:
        return label in self.centroids

    def similarity(self, first: str, second: str) -> float:
        return cosine_similarity(self.centroids[first], self.centroids[second])


class JaccardSimilarity:
    """Jaccard overlap of the document sets carrying each label."""

    name = "jaccard"

    def __init__(self, label_docs: Mapping[str, set[str]]):
        self.label_docs = label_docs

    def supports(self, label: str) -> bool:
        return bool(self.label_docs.get(label))

    def similarity(self, first: str, second: str) -> float:
        a, b = self.label_docs[first], self.label_docs[second]
        union = a | b
        return len(a & b) / len(union) if union else 0.0


def select_similarity(
    label_docs: Mapping[str, set[str]], doc_vectors: Mapping[str, Sequence[float]] | None
) -> Similarity:
    """Cosine over centroids when at least two labels have one, else Jaccard."""
    centroids = compute_centroids(label_docs, doc_vectors or {})
    if len(centroids) >= 2:
        return CosineSimilarity(centroids)
    logger.warning(
        f"Only {len(centroids)} label(s) have vectors; falling back to Jaccard similarity"
    )
    return JaccardSimilarity(label_docs)


def rank_pairs(
    labels: Sequence[str],
    label_docs: Mapping[str, set[str]],
    similarity: Similarity,
    limit: int,
) -> tuple[list[LabelPair], list[LabelPair]]:
    """Most similar pairs, and least similar co-occurring pairs (gap pairs).

    Pairs are lexically ordered within themselves and ties are broken by that
    order.
    """
    comparable = sorted(label for label in set(labels) if similarity.supports(label))
    pairs = [
        LabelPair(first=a, second=b, similarity=similarity.similarity(a, b))
        for a, b in combinations(comparable, 2)
    ]

    similar = sorted(pairs, key=lambda p: (-p.similarity, p.first, p.second))[:limit]

    co_occurring = [
        p for p in pairs if label_docs.get(p.first, set()) & label_docs.get(p.second, set())
    ]
    gaps = sorted(co_occurring, key=lambda p: (p.similarity, p.first, p.second))[:limit]
    return similar, gaps


def analyze_field(
    field: str,
    counts: FieldCounts,
    doc_vectors: Mapping[str, Sequence[float]] | None,
    config: AnalyticsConfig,
) -> FieldAnalytics:
    total = counts.totals.get(field, 0)
    ranked = label_counts(counts.labels.get(field, Counter()), total)
    label_docs = counts.label_docs.get(field, {})

    similarity = select_similarity(label_docs, doc_vectors)
    frequent = [c.label for c in ranked[: config.frequent_label_limit]]
    similar, gaps = rank_pairs(frequent, label_docs, similarity, config.pair_limit)

    return FieldAnalytics(
        field=field,
        total=total,
        label_counts=ranked,
        top_labels=top_labels(ranked, config.top_k),
        underserved_labels=underserved_labels(ranked, config.top_k),
        metric=similarity.name,
        similar_pairs=similar,
        gap_pairs=gaps,
    )


def build_report(
    pages: Iterable[PageRecord],
    ignore_fields: Sequence[str] = (),
    doc_vectors: Mapping[str, Sequence[float]] | None = None,
    config: AnalyticsConfig | None = None,
) -> AggregateReport:
    """Build the aggregate report for all label fields of the given pages.

    Args:
        pages: Enriched pages
        ignore_fields: Page fields left out of the report
        doc_vectors: Per-document vectors keyed by document id, if available
        config: Ranking limits

    Returns:
        Report with field totals (descending) and per-field analytics
    """
    config = config or AnalyticsConfig()
    pages = list(pages)
    logger.info(f"Building report over {len(pages)} pages, ignoring {list(ignore_fields)}")

    counts = count_fields(pages, ignore_fields)
    field_totals = [
        FieldTotal(field=f, total=t)
        for f, t in sorted(counts.totals.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    fields = {
        ft.field: analyze_field(ft.field, counts, doc_vectors, config) for ft in field_totals
    }

    return AggregateReport(page_count=len(pages), page_field_totals=field_totals, fields=fields)
