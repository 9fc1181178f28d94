"""Exhaustive flat vector index.

Append-only store of fixed-dimension vectors searched by brute-force L2
distance. Each vector gets the next ordinal on insertion; ordinals are the
join key into the DocumentMap and are never reused. There is no per-vector
update or delete: corrections require a rebuild from the source documents.

The index round-trips through an ``IndexSnapshot`` ({dim, nbDocs, flatArray})
so it can be rebuilt without re-embedding anything.
"""

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

from content_index.document_map import DocumentMap
from content_index.errors import IndexDimensionMismatch, SnapshotIntegrityError
from content_index.models import IndexSnapshot


class SearchHit(NamedTuple):
    """One nearest-neighbour result."""

    ordinal: int
    distance: float


class FlatIndex:
    """Flat L2 index over float32 vectors."""

    def __init__(self, dim: int):
        if dim <= 0:
            raise ValueError(f"dim must be positive, got {dim}")
        self.dim = dim
        self._vectors = np.empty((0, dim), dtype=np.float32)

    def __len__(self) -> int:
        return int(self._vectors.shape[0])

    @property
    def count(self) -> int:
        return len(self)

    def add(self, vectors: Sequence[Sequence[float]]) -> list[int]:
        """Append vectors and return the ordinals assigned to them.

        Raises:
            IndexDimensionMismatch: If any vector has the wrong dimension
            ValueError: If any vector contains non-finite values
        """
        if len(vectors) == 0:
            return []

        for vector in vectors:
            if len(vector) != self.dim:
                raise IndexDimensionMismatch(self.dim, len(vector))

        array = np.asarray(vectors, dtype=np.float32)
        if not np.all(np.isfinite(array)):
            raise ValueError("Vectors contain non-finite values")

        start = len(self)
        self._vectors = np.vstack([self._vectors, array])
        return list(range(start, start + array.shape[0]))

    def search(self, query: Sequence[float], k: int) -> list[SearchHit]:
        """Return the k nearest vectors to query, ascending by L2 distance.

        Ties are broken by ordinal so results are deterministic. Fewer than k
        hits are returned when the index holds fewer than k vectors.
        """
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")
        if len(query) != self.dim:
            raise IndexDimensionMismatch(self.dim, len(query))
        if len(self) == 0:
            return []

        q = np.asarray(query, dtype=np.float32)
        diffs = self._vectors - q
        distances = np.sqrt(np.einsum("ij,ij->i", diffs, diffs))
        # lexsort sorts by the last key first: distance, then ordinal
        order = np.lexsort((np.arange(len(self)), distances))[:k]
        return [SearchHit(int(i), float(distances[i])) for i in order]

    def vector(self, ordinal: int) -> list[float]:
        if ordinal < 0 or ordinal >= len(self):
            raise IndexError(f"Ordinal {ordinal} out of range for index of size {len(self)}")
        return self._vectors[ordinal].tolist()

    def source_vectors(self, document_map: DocumentMap) -> dict[str, list[float]]:
        """Mean chunk vector per source document.

        Raises:
            SnapshotIntegrityError: If the map is not parallel to the index
        """
        if len(document_map) != len(self):
            raise SnapshotIntegrityError(
                f"Document map has {len(document_map)} entries but index has {len(self)} vectors"
            )

        rows: dict[str, list[int]] = {}
        for ordinal, entry in enumerate(document_map):
            rows.setdefault(entry.source, []).append(ordinal)

        return {
            source: self._vectors[ordinals].mean(axis=0).tolist()
            for source, ordinals in rows.items()
        }

    def to_snapshot(self) -> IndexSnapshot:
        return IndexSnapshot(
            dim=self.dim,
            nb_docs=len(self),
            flat_array=self._vectors.ravel().tolist(),
        )

    @classmethod
    def from_snapshot(cls, snapshot: IndexSnapshot) -> "FlatIndex":
        """Rebuild an index from a snapshot without re-embedding."""
        index = cls(snapshot.dim)
        if snapshot.nb_docs:
            index._vectors = np.asarray(snapshot.flat_array, dtype=np.float32).reshape(
                snapshot.nb_docs, snapshot.dim
            )
        return index
