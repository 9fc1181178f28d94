"""Operation surface of the content index.

``ContentEngine`` wires configuration, clients and stores together and exposes
the operations used by the CLI and by the job service: ``index``,
``retrieve``, ``query``, ``report`` and ``build_label_context``.

Clients are constructed once in an ``EngineContext`` and passed by reference
into every component, so tests can substitute doubles for any of them.
"""

import dataclasses
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from content_index.analytics import build_report
from content_index.build_state import (
    build_record_from_config,
    chunking_from_record,
    compute_config_fingerprint,
    should_rebuild,
)
from content_index.chunking import ChunkingConfig
from content_index.config import ContentIndexConfig
from content_index.document_map import DocumentMap
from content_index.documents import ChainedDocumentStore, DirectoryDocumentStore, DocumentStore
from content_index.embedding import EmbeddingClient, ResilientEmbedder
from content_index.generation import GenerationClient, OllamaGeneration
from content_index.index import FlatIndex
from content_index.indexer import ContentIndexer
from content_index.labels import LabelContextBuilder, LabelMerger
from content_index.models import (
    AggregateReport,
    BuildRecord,
    IndexingReport,
    LabelContextReport,
    PageRecord,
    PointHit,
    RetrievalResponse,
)
from content_index.point_store import InMemoryPointStore, PointStore, QdrantPointStore
from content_index.retrieval import RetrievalService
from content_index.store import IndexStore

SUMMARY_KEYS = ("summary", "text", "content")
SOURCE_KEYS = ("url", "source")


@dataclass
class EngineContext:
    """Shared clients and stores for one engine instance."""

    config: ContentIndexConfig
    embedder: ResilientEmbedder
    generator: GenerationClient
    point_store: PointStore
    index_store: IndexStore


def create_point_store(config: ContentIndexConfig) -> PointStore:
    if config.point_store.backend == "qdrant":
        if not config.point_store.url:
            raise ValueError("point_store.url is required for the qdrant backend")
        return QdrantPointStore.from_url(config.point_store.url, config.point_store.api_key)
    return InMemoryPointStore()


def build_context(
    config: ContentIndexConfig,
    embedding_client: EmbeddingClient | None = None,
    generator: GenerationClient | None = None,
    point_store: PointStore | None = None,
    data_dir: Path | str | None = None,
) -> EngineContext:
    """Construct every client once from configuration.

    Any of the clients may be passed in to replace the configured one.
    """
    index_config = config.index
    return EngineContext(
        config=config,
        embedder=ResilientEmbedder.from_config(config.embedding, client=embedding_client),
        generator=generator or OllamaGeneration(config.generation),
        point_store=point_store or create_point_store(config),
        index_store=IndexStore(
            data_dir or index_config.data_dir,
            snapshot_file=index_config.snapshot_file,
            map_file=index_config.map_file,
            meta_file=index_config.meta_file,
            lock_timeout=index_config.lock_timeout,
        ),
    )


def format_hits(hits: Sequence[PointHit], term: str, collection: str) -> str:
    """Render point store hits as numbered, source-attributed text.

    Example:
        >>> hit = PointHit(id="1", payload={"text": "AI tips", "url": "https://a"}, score=0.9)
        >>> print(format_hits([hit], "ai", "content-interests"))
        Results from collection "content-interests" for term "ai":
        <BLANKLINE>
        #1: AI tips
        (Source: https://a)
    """
    if not hits:
        return f'No relevant data found for "{term}" in "{collection}".'

    lines = []
    for i, hit in enumerate(hits, start=1):
        summary = next((hit.payload[k] for k in SUMMARY_KEYS if hit.payload.get(k)), "")
        source = next((hit.payload[k] for k in SOURCE_KEYS if hit.payload.get(k)), "")
        if not source and hit.payload.get("urls"):
            source = ", ".join(hit.payload["urls"])
        lines.append(f"#{i}: {summary}" + (f"\n(Source: {source})" if source else ""))

    return f'Results from collection "{collection}" for term "{term}":\n\n' + "\n\n".join(lines)


class ContentEngine:
    """High-level operations over the flat index and the label point store."""

    def __init__(self, context: EngineContext):
        self.context = context
        self.config = context.config
        self.merger = LabelMerger(context.point_store, context.embedder)
        # Stores indexed into the current snapshot by this engine
        self._sources: list[DocumentStore] = []

    def _chunking(self, chunk_size: int | None) -> ChunkingConfig:
        if chunk_size is None:
            return self.config.chunking
        return dataclasses.replace(self.config.chunking, chunk_size=chunk_size)

    async def index(
        self,
        document_store: DocumentStore,
        chunk_size: int | None = None,
        append: bool = False,
    ) -> IndexingReport:
        """Chunk, embed and index every document, then persist the snapshot.

        With ``append=True`` the existing snapshot is extended, unless its
        build record shows different chunking or embedding parameters, in
        which case the index is rebuilt from scratch. The snapshot is written
        once, after the run, and only if at least one chunk was indexed.

        Args:
            document_store: Source documents
            chunk_size: Override of the configured chunk size in words
            append: Extend the persisted snapshot instead of replacing it
        """
        chunking = self._chunking(chunk_size)
        embedding = self.config.embedding
        store = self.context.index_store

        index = FlatIndex(embedding.dimensions)
        document_map = DocumentMap()
        sources: list[DocumentStore] = []
        source_dirs: list[str] = []

        if append and store.exists():
            loaded = store.load()
            fingerprint = compute_config_fingerprint(chunking, embedding)
            if loaded.record is None or should_rebuild(
                loaded.record, fingerprint, embedding.version
            ):
                logger.warning(
                    "Existing snapshot was built with different parameters; rebuilding"
                )
            else:
                index, document_map = loaded.index, loaded.document_map
                sources, source_dirs = list(self._sources), list(loaded.record.source_dirs)
                logger.info(f"Appending to existing snapshot with {len(index)} vectors")

        indexer = ContentIndexer(
            self.context.embedder,
            chunking_config=chunking,
            batch_size=self.config.index.batch_size,
            concurrency=self.config.index.concurrency,
            persist_chunk_text=self.config.index.persist_chunk_text,
        )
        report = await indexer.index(document_store, index, document_map)

        if report.chunks_indexed == 0:
            logger.warning("No chunks were indexed; existing snapshot left untouched")
            return report

        if isinstance(document_store, DirectoryDocumentStore):
            location = str(document_store.directory.resolve())
            if location not in source_dirs:
                source_dirs.append(location)

        record = build_record_from_config(
            chunking, embedding, vector_count=len(index), source_dirs=source_dirs
        )
        store.save(index, document_map, record)
        self._sources = [*sources, document_store]
        return report

    def _source_store(self, record: BuildRecord | None) -> DocumentStore | None:
        """Reopen the documents behind the current snapshot."""
        stores = list(self._sources)
        if not stores and record is not None:
            for directory in record.source_dirs:
                if Path(directory).is_dir():
                    stores.append(DirectoryDocumentStore(directory))
                else:
                    logger.warning(f"Indexed source directory {directory} no longer exists")
        if not stores:
            return None
        return stores[0] if len(stores) == 1 else ChainedDocumentStore(stores)

    async def retrieve(
        self,
        question: str,
        k: int = 5,
        document_store: DocumentStore | None = None,
        chunk_size: int | None = None,
    ) -> RetrievalResponse:
        """Return the k indexed chunks nearest to the question.

        Chunk text that was not stored inline is recomputed from
        ``document_store``, or else from the documents this engine indexed, or
        else from the source directories recorded with the snapshot. Chunking
        parameters default to the ones recorded at index time.

        Raises:
            FileNotFoundError: If no snapshot has been persisted
            ConfigurationError: If the chunking parameters differ from the
                ones recorded at index time
        """
        loaded = self.context.index_store.load()
        chunking = None if chunk_size is None else self._chunking(chunk_size)
        service = RetrievalService(
            self.context.embedder,
            loaded.index,
            loaded.document_map,
            chunking_config=(
                chunking or chunking_from_record(loaded.record) or self.config.chunking
            ),
            document_store=document_store or self._source_store(loaded.record),
            record=loaded.record,
        )
        return await service.retrieve(question, k=k)

    async def query(self, question: str, field: str, k: int = 5) -> list[PointHit]:
        """Search the label collection of a field for points similar to the question."""
        collection = self.config.point_store.collection_name(field)
        if not question.strip():
            logger.warning(f"No search term for collection {collection}")
            return []
        if not await self.context.point_store.collection_exists(collection):
            logger.warning(f"Collection {collection!r} does not exist")
            return []

        vector = await self.context.embedder.embed_query(question.strip())
        hits = await self.context.point_store.search(collection, vector, k)
        logger.info(f"Found {len(hits)} result(s) in {collection!r}")
        return hits

    def document_vectors(self) -> dict[str, list[float]] | None:
        """Per-document vectors from the persisted snapshot, if one exists."""
        try:
            loaded = self.context.index_store.load()
        except FileNotFoundError:
            logger.warning("No index snapshot found; analytics will use label co-occurrence")
            return None
        return loaded.index.source_vectors(loaded.document_map)

    def report(
        self, pages: Iterable[PageRecord], ignore_fields: Sequence[str] = ()
    ) -> AggregateReport:
        """Aggregate label analytics across pages."""
        return build_report(
            pages,
            ignore_fields=ignore_fields,
            doc_vectors=self.document_vectors(),
            config=self.config.analytics,
        )

    async def build_label_context(
        self,
        pages: Iterable[PageRecord],
        field: str,
        prompt: str,
        website: dict[str, Any] | None = None,
    ) -> LabelContextReport:
        """Generate label evidence for each page and merge it into the field's collection."""
        builder = LabelContextBuilder(
            self.context.generator,
            self.merger,
            dimensions=self.config.embedding.dimensions,
            min_contribution_chars=self.config.analytics.min_contribution_chars,
        )
        return await builder.run(
            pages,
            field=field,
            prompt=prompt,
            collection=self.config.point_store.collection_name(field),
            website=website,
        )

    async def aclose(self) -> None:
        """Close clients that hold network resources."""
        for client in (
            self.context.embedder.client,
            self.context.generator,
            self.context.point_store,
        ):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
