"""End-to-end document indexing workflow.

Combines chunking, resilient embedding and flat-index insertion.
"""

import asyncio

from loguru import logger

from content_index.chunking import Chunk, ChunkingConfig, WordChunker
from content_index.document_map import DocumentMap
from content_index.documents import DocumentStore
from content_index.embedding import EmbeddingOutcome, ResilientEmbedder
from content_index.errors import (
    ChunkingError,
    ConfigurationError,
    EmbeddingExhaustedError,
    IndexDimensionMismatch,
)
from content_index.index import FlatIndex
from content_index.models import DocumentMapEntry, IndexingReport


class ContentIndexer:
    """Indexes documents from a document store into a flat index.

    Handles the complete workflow:
    1. Read and chunk each document
    2. Embed chunks in bounded batches (concurrently within a batch)
    3. Append each batch's vectors and provenance in chunk order

    All appends for a batch finish before the next batch starts, so ordinals
    follow input order and the document map stays parallel to the index.
    """

    def __init__(
        self,
        embedder: ResilientEmbedder,
        chunking_config: ChunkingConfig | None = None,
        batch_size: int = 32,
        concurrency: int = 4,
        persist_chunk_text: bool = False,
    ):
        """Initialize the indexer.

        Args:
            embedder: Resilient embedder used for every chunk
            chunking_config: Configuration for text chunking (uses defaults if None)
            batch_size: Chunks embedded per batch
            concurrency: Maximum concurrent embedding calls within a batch
            persist_chunk_text: Store chunk text in the document map
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.embedder = embedder
        self.chunker = WordChunker(chunking_config)
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.persist_chunk_text = persist_chunk_text

    async def index(
        self,
        store: DocumentStore,
        index: FlatIndex,
        document_map: DocumentMap,
    ) -> IndexingReport:
        """Index every document in the store, appending to index and map.

        Per-document and per-chunk failures are logged and counted. Only
        structural failures (dimension mismatch, configuration) propagate.

        Returns:
            IndexingReport with document and chunk counts
        """
        if len(index) != len(document_map):
            raise ConfigurationError(
                f"Index ({len(index)}) and document map ({len(document_map)}) are not parallel"
            )

        report = IndexingReport()
        document_ids = store.list_ids()
        logger.info(f"Indexing {len(document_ids)} document(s)")

        pending: list[Chunk] = []
        for position, document_id in enumerate(document_ids, start=1):
            try:
                text = store.get(document_id)
            except ChunkingError as e:
                report.skipped += 1
                logger.warning(f"Skipping {document_id}: {e}")
                continue
            except (KeyError, OSError, UnicodeDecodeError) as e:
                report.failed += 1
                logger.error(f"Error reading document {document_id}: {e}")
                continue

            chunks = self.chunker.chunk(text, document_id)
            if not chunks:
                report.skipped += 1
                logger.warning(f"Document {document_id} has no text to index, skipping")
                continue

            report.processed += 1
            pending.extend(chunks)
            logger.info(
                f"Processed {position}/{len(document_ids)}: {document_id} "
                f"({len(chunks)} chunk(s))"
            )

            while len(pending) >= self.batch_size:
                batch, pending = pending[: self.batch_size], pending[self.batch_size :]
                await self._index_batch(batch, index, document_map, report)

        if pending:
            await self._index_batch(pending, index, document_map, report)

        logger.info(
            f"Indexing finished: {report.processed} processed, {report.skipped} skipped, "
            f"{report.failed} failed; {report.chunks_indexed} chunks indexed, "
            f"{report.chunks_dropped} dropped, {report.chunks_failed} failed"
        )
        return report

    async def _index_batch(
        self,
        batch: list[Chunk],
        index: FlatIndex,
        document_map: DocumentMap,
        report: IndexingReport,
    ) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_bounded(chunk: Chunk) -> EmbeddingOutcome | None:
            async with semaphore:
                return await self._embed_chunk(chunk, report)

        tasks = [asyncio.create_task(embed_bounded(chunk)) for chunk in batch]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            # A structural failure aborts the run; stop the sibling embeds
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        embedded = [
            (chunk, outcome)
            for chunk, outcome in zip(batch, outcomes, strict=True)
            if outcome is not None
        ]
        if not embedded:
            return

        # One add per batch: a dimension mismatch rejects the batch before any append
        index.add([outcome.vector for _, outcome in embedded])
        for chunk, outcome in embedded:
            keep_text = self.persist_chunk_text or outcome.truncated
            document_map.append(
                DocumentMapEntry(
                    source=chunk.source_id,
                    chunk_index=chunk.index,
                    total_chunks=chunk.total_chunks,
                    text=outcome.text if keep_text else None,
                )
            )

        report.chunks_indexed += len(embedded)
        logger.debug(f"Appended batch of {len(embedded)} chunk(s); index size {len(index)}")

    async def _embed_chunk(self, chunk: Chunk, report: IndexingReport) -> EmbeddingOutcome | None:
        label = f"chunk {chunk.index}/{chunk.total_chunks} of {chunk.source_id}"
        try:
            return await self.embedder.embed(chunk.text)
        except EmbeddingExhaustedError as e:
            report.chunks_dropped += 1
            logger.warning(f"Skipped {label}: {e}")
        except (IndexDimensionMismatch, ConfigurationError):
            raise
        except Exception as e:
            report.chunks_failed += 1
            logger.error(f"Unexpected error embedding {label}: {e}")
        return None
