"""Semantic retrieval over the flat index.

Embeds a query with the indexing model, searches the index and resolves each
hit through the document map. Chunk text that was not persisted inline is
recomputed by re-chunking the source with the same ``ChunkingConfig`` that
built the index. The build record's chunking fingerprint guards that
coupling, and is only checked once a chunk actually needs recomputing.
"""

from loguru import logger

from content_index.chunking import ChunkingConfig, WordChunker
from content_index.document_map import DocumentMap
from content_index.documents import DocumentStore
from content_index.embedding import ResilientEmbedder
from content_index.errors import ChunkingError, ConfigurationError, RetrievalLookupError
from content_index.index import FlatIndex
from content_index.models import (
    BuildRecord,
    DocumentMapEntry,
    RetrievalResponse,
    RetrievedChunk,
)


class RetrievalService:
    """Answers ``retrieve(query, k)`` against one loaded index snapshot.

    The snapshot is treated as immutable; a rebuilt index means a new service.
    """

    def __init__(
        self,
        embedder: ResilientEmbedder,
        index: FlatIndex,
        document_map: DocumentMap,
        chunking_config: ChunkingConfig | None = None,
        document_store: DocumentStore | None = None,
        record: BuildRecord | None = None,
    ):
        """Initialize the service.

        Args:
            embedder: Embedder sharing the index's embedding model
            index: Loaded flat index
            document_map: Document map parallel to the index
            chunking_config: Chunking parameters used when the index was built
            document_store: Source of raw text for chunk recomputation
            record: Build record of the snapshot, used to verify chunking parameters
        """
        self.embedder = embedder
        self.index = index
        self.document_map = document_map
        self.chunker = WordChunker(chunking_config)
        self.document_store = document_store
        self.record = record
        self._chunking_verified = False

    def _verify_chunking(self) -> None:
        if self._chunking_verified:
            return
        record = self.record
        if record is not None and record.chunking_fingerprint != self.chunker.config.fingerprint():
            raise ConfigurationError(
                "Retrieval chunking parameters differ from those used to build the index; "
                "recomputed chunk text would not match",
                context={"chunking": self.chunker.config},
            )
        self._chunking_verified = True

    async def retrieve(self, query: str, k: int = 5) -> RetrievalResponse:
        """Return up to k chunks nearest to query, ascending by distance.

        Unresolvable hits are logged and skipped; when none resolve, the
        response is explicitly empty.

        Raises:
            ConfigurationError: If a chunk must be recomputed and the chunking
                parameters differ from the ones recorded at index time
        """
        cleaned = query.strip()
        if not cleaned:
            logger.warning("Empty query; returning no results")
            return RetrievalResponse(query=query)

        if len(self.index) == 0:
            logger.warning("Index is empty; returning no results")
            return RetrievalResponse(query=query)

        query_vector = await self.embedder.embed_query(cleaned)
        hits = self.index.search(query_vector, k)
        logger.info(f"Searching top {k} chunks for query {cleaned!r}: {len(hits)} hit(s)")

        results: list[RetrievedChunk] = []
        # Cache re-chunked sources within one request
        rechunked: dict[str, list[str]] = {}
        for hit in hits:
            try:
                entry = self.document_map.lookup(hit.ordinal)
            except RetrievalLookupError as e:
                logger.error(f"Skipping search hit: {e}")
                continue

            text = entry.text
            if text is None:
                text = self._recompute_text(entry, rechunked)
                if text is None:
                    continue

            results.append(
                RetrievedChunk(
                    ordinal=hit.ordinal,
                    text=text,
                    source_id=entry.source,
                    chunk_index=entry.chunk_index,
                    total_chunks=entry.total_chunks,
                    distance=hit.distance,
                )
            )

        if not results:
            logger.warning(f"No valid results for query {cleaned!r}")
        return RetrievalResponse(query=query, results=results)

    def _recompute_text(
        self, entry: DocumentMapEntry, rechunked: dict[str, list[str]]
    ) -> str | None:
        self._verify_chunking()
        if self.document_store is None:
            logger.error(
                f"Chunk {entry.chunk_index} of {entry.source} has no stored text "
                "and no document store is configured"
            )
            return None

        if entry.source not in rechunked:
            try:
                raw = self.document_store.get(entry.source)
            except (KeyError, ChunkingError, OSError) as e:
                logger.error(f"Cannot reload source {entry.source}: {e}")
                return None
            rechunked[entry.source] = [c.text for c in self.chunker.chunk(raw, entry.source)]

        texts = rechunked[entry.source]
        if len(texts) != entry.total_chunks or entry.chunk_index > len(texts):
            logger.error(
                f"Source {entry.source} now chunks into {len(texts)} pieces, "
                f"index recorded {entry.total_chunks}; skipping stale result"
            )
            return None
        return texts[entry.chunk_index - 1]
