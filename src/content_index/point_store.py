"""Point-addressable vector stores for per-label accumulation.

Unlike the append-only flat index, a point store is keyed by id and supports
per-id upsert, payload-only updates and retrieval, so label evidence can
accumulate across runs.
"""

import hashlib
import math
from collections.abc import Sequence
from typing import Any, Protocol

from loguru import logger
from qdrant_client import AsyncQdrantClient, models

from content_index.errors import IndexDimensionMismatch
from content_index.models import PointHit


def point_id(label: str) -> str:
    """Deterministic UUID-shaped id for a label (SHA-1 of the label text).

    Example:
        >>> point_id("ai") == point_id("ai")
        True
    """
    digest = hashlib.sha1(label.encode("utf-8")).hexdigest()
    return "-".join(
        [digest[0:8], digest[8:12], digest[12:16], digest[16:20], digest[20:32]]
    )


class PointStore(Protocol):
    """Protocol for point store implementations."""

    async def collection_exists(self, name: str) -> bool: ...

    async def create_collection(self, name: str, dim: int) -> None: ...

    async def upsert(
        self, collection: str, id: str, vector: Sequence[float], payload: dict[str, Any]
    ) -> None: ...

    async def retrieve(self, collection: str, id: str) -> dict[str, Any] | None:
        """Return the point's payload, or None if the point does not exist."""
        ...

    async def set_payload(self, collection: str, id: str, payload: dict[str, Any]) -> None:
        """Replace payload keys without touching the stored vector."""
        ...

    async def search(self, collection: str, vector: Sequence[float], k: int) -> list[PointHit]:
        """Return the k most similar points (highest score first)."""
        ...


async def ensure_collection(store: PointStore, name: str, dim: int) -> bool:
    """Create the collection if missing. Returns True if it was created."""
    if await store.collection_exists(name):
        logger.debug(f"Collection {name!r} already exists")
        return False
    logger.info(f"Creating collection {name!r} (dim {dim})")
    await store.create_collection(name, dim)
    return True


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryPointStore:
    """Process-local point store with cosine search."""

    def __init__(self) -> None:
        self._dims: dict[str, int] = {}
        self._points: dict[str, dict[str, tuple[list[float], dict[str, Any]]]] = {}

    def _collection(self, name: str) -> dict[str, tuple[list[float], dict[str, Any]]]:
        if name not in self._points:
            raise ValueError(f"Collection {name!r} does not exist")
        return self._points[name]

    async def collection_exists(self, name: str) -> bool:
        return name in self._points

    async def create_collection(self, name: str, dim: int) -> None:
        if dim <= 0:
            raise ValueError(f"dim must be positive, got {dim}")
        self._dims[name] = dim
        self._points.setdefault(name, {})

    async def upsert(
        self, collection: str, id: str, vector: Sequence[float], payload: dict[str, Any]
    ) -> None:
        points = self._collection(collection)
        if len(vector) != self._dims[collection]:
            raise IndexDimensionMismatch(self._dims[collection], len(vector))
        points[id] = (list(vector), dict(payload))

    async def retrieve(self, collection: str, id: str) -> dict[str, Any] | None:
        point = self._collection(collection).get(id)
        return dict(point[1]) if point else None

    async def set_payload(self, collection: str, id: str, payload: dict[str, Any]) -> None:
        points = self._collection(collection)
        if id not in points:
            raise KeyError(f"Point {id} not found in {collection!r}")
        vector, current = points[id]
        points[id] = (vector, {**current, **payload})

    async def search(self, collection: str, vector: Sequence[float], k: int) -> list[PointHit]:
        points = self._collection(collection)
        if len(vector) != self._dims[collection]:
            raise IndexDimensionMismatch(self._dims[collection], len(vector))
        scored = [
            PointHit(id=pid, payload=dict(payload), score=_cosine(vector, stored))
            for pid, (stored, payload) in points.items()
        ]
        scored.sort(key=lambda hit: (-hit.score, hit.id))
        return scored[:k]

    def vectors(self, collection: str) -> dict[str, list[float]]:
        """Stored vectors by point id."""
        return {pid: list(vec) for pid, (vec, _) in self._collection(collection).items()}


class QdrantPointStore:
    """Qdrant-backed point store (cosine distance)."""

    def __init__(self, client: AsyncQdrantClient):
        self.client = client

    @classmethod
    def from_url(cls, url: str, api_key: str | None = None) -> "QdrantPointStore":
        return cls(AsyncQdrantClient(url=url, api_key=api_key))

    async def collection_exists(self, name: str) -> bool:
        return await self.client.collection_exists(name)

    async def create_collection(self, name: str, dim: int) -> None:
        await self.client.create_collection(
            collection_name=name,
            vectors_config=models.VectorParams(size=dim, distance=models.Distance.COSINE),
        )

    async def upsert(
        self, collection: str, id: str, vector: Sequence[float], payload: dict[str, Any]
    ) -> None:
        await self.client.upsert(
            collection_name=collection,
            points=[models.PointStruct(id=id, vector=list(vector), payload=payload)],
        )

    async def retrieve(self, collection: str, id: str) -> dict[str, Any] | None:
        records = await self.client.retrieve(
            collection_name=collection, ids=[id], with_payload=True, with_vectors=False
        )
        if not records:
            return None
        return dict(records[0].payload or {})

    async def set_payload(self, collection: str, id: str, payload: dict[str, Any]) -> None:
        await self.client.set_payload(collection_name=collection, payload=payload, points=[id])

    async def search(self, collection: str, vector: Sequence[float], k: int) -> list[PointHit]:
        response = await self.client.query_points(
            collection_name=collection, query=list(vector), limit=k, with_payload=True
        )
        return [
            PointHit(id=str(point.id), payload=dict(point.payload or {}), score=point.score)
            for point in response.points
        ]

    async def aclose(self) -> None:
        await self.client.close()
