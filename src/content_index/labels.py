"""Label point merging and label-context ingestion.

Each label (an interest, a segment, ...) becomes one point in a point store
collection, keyed by the deterministic ``point_id`` of its text. The first
sighting embeds a representative text; later sightings append the new
contribution to the payload without re-embedding, so the stored vector stays
at the label's first-seen semantic position.

Merges for the same id are serialized with a per-id asyncio lock. The lock is
process-local: writers in other processes can still lose updates.
"""

import asyncio
import json
import re
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any, Literal

from loguru import logger

from content_index.completion import ArrayResult, parse_completion
from content_index.embedding import ResilientEmbedder
from content_index.errors import EmbeddingError
from content_index.generation import GenerationClient
from content_index.models import (
    Contribution,
    LabelContextReport,
    LabeledPoint,
    PageRecord,
)
from content_index.point_store import PointStore, ensure_collection, point_id

MergeOutcome = Literal["created", "merged", "unchanged"]

PROMPT_TOKEN = re.compile(r"\{(page|website)\.([A-Za-z0-9_]+)\}")
LABEL_KEYS = ("interest", "term", "label")
TEXT_KEYS = ("text", "content")


def sanitize_text(value: str) -> str:
    """Replace non-alphanumerics with spaces and collapse whitespace."""
    return " ".join(re.sub(r"[^a-zA-Z0-9 ]", " ", value).split())


def render_prompt(
    template: str, page: dict[str, Any], website: dict[str, Any] | None = None
) -> str:
    """Fill ``{page.field}`` and ``{website.field}`` tokens with sanitized values.

    Raises:
        ValueError: If the template references a field that is not provided
    """
    scopes = {"page": page, "website": website}

    def substitute(match: re.Match[str]) -> str:
        scope, field = match.group(1), match.group(2)
        data = scopes[scope]
        if data is None:
            raise ValueError(f"Template uses {{{scope}.{field}}} but no {scope} data was provided")
        if field not in data:
            raise ValueError(f'Missing field "{scope}.{field}" in provided data')
        value = data[field]
        if isinstance(value, str):
            return sanitize_text(value)
        return json.dumps(value)

    return PROMPT_TOKEN.sub(substitute, template)


def to_labeled_point(id: str, payload: dict[str, Any]) -> LabeledPoint:
    """Rebuild a LabeledPoint from a stored payload."""
    return LabeledPoint(
        id=id,
        label=payload["label"],
        contributions=[Contribution(**c) for c in payload.get("contributions", [])],
    )


class LabelMerger:
    """Upsert-merge of label evidence into a point store."""

    def __init__(self, store: PointStore, embedder: ResilientEmbedder):
        self.store = store
        self.embedder = embedder
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def _serialized(self, id: str) -> AsyncIterator[None]:
        """Hold the lock for one point id; the lock is dropped once unused."""
        lock = self._locks.setdefault(id, asyncio.Lock())
        self._users[id] = self._users.get(id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[id] -= 1
            if self._users[id] == 0:
                del self._users[id]
                del self._locks[id]

    async def merge(
        self,
        collection: str,
        label: str,
        text: str,
        source_url: str,
        label_key: str | None = None,
    ) -> MergeOutcome:
        """Record that ``source_url`` carries ``label``, with supporting text.

        Args:
            collection: Point store collection (one per label field)
            label: Label text; determines the point id
            text: Representative text; embedded only on first sighting
            source_url: Document the evidence came from
            label_key: Extra payload key that also holds the label (e.g. "interests")

        Returns:
            "created" for a new point, "merged" when a contribution was added,
            "unchanged" when the same contribution was already recorded
        """
        id = point_id(label)
        contribution = {"text": text, "source_url": source_url}

        async with self._serialized(id):
            payload = await self.store.retrieve(collection, id)

            if payload is None:
                outcome = await self.embedder.embed(text)
                new_payload: dict[str, Any] = {
                    "label": label,
                    "text": text,
                    "contributions": [contribution],
                    "urls": [source_url],
                }
                if label_key:
                    new_payload[label_key] = label
                await self.store.upsert(collection, id, outcome.vector, new_payload)
                logger.info(f"Inserted new point for {label!r}")
                return "created"

            contributions = list(payload.get("contributions", []))
            if contribution in contributions:
                return "unchanged"

            contributions.append(contribution)
            urls = list(dict.fromkeys([*payload.get("urls", []), source_url]))
            await self.store.set_payload(
                collection, id, {"contributions": contributions, "urls": urls}
            )
            logger.info(f"Updated point for {label!r} with {len(urls)} URLs")
            return "merged"

    async def get(self, collection: str, label: str) -> LabeledPoint | None:
        id = point_id(label)
        payload = await self.store.retrieve(collection, id)
        return to_labeled_point(id, payload) if payload is not None else None


def extract_label_items(items: list[Any], field: str) -> list[tuple[str, str]]:
    """Pull ``(label, text)`` pairs out of parsed completion items."""
    pairs: list[tuple[str, str]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        label = next(
            (item[k] for k in (*LABEL_KEYS, field) if isinstance(item.get(k), str)), ""
        )
        text = next((item[k] for k in TEXT_KEYS if isinstance(item.get(k), str)), "")
        pairs.append((label.strip(), text.strip()))
    return pairs


class LabelContextBuilder:
    """Generates per-page label evidence with an LLM and merges it into points.

    For each page: render the prompt, generate, parse the completion, and merge
    every ``{interest|term|label, text|content}`` item into the field's
    collection. Weak items (missing label, short text) are skipped.
    """

    def __init__(
        self,
        generator: GenerationClient,
        merger: LabelMerger,
        dimensions: int,
        min_contribution_chars: int = 20,
    ):
        self.generator = generator
        self.merger = merger
        self.dimensions = dimensions
        self.min_contribution_chars = min_contribution_chars

    async def run(
        self,
        pages: Iterable[PageRecord],
        field: str,
        prompt: str,
        collection: str,
        website: dict[str, Any] | None = None,
    ) -> LabelContextReport:
        """Process pages sequentially and merge their label items."""
        await ensure_collection(self.merger.store, collection, self.dimensions)
        report = LabelContextReport(collection=collection)

        for page in pages:
            logger.info(f"Processing {page.url}")
            try:
                final_prompt = render_prompt(prompt, page.data, website)
                completion = await self.generator.generate(final_prompt)
            except Exception as e:
                report.pages_failed += 1
                logger.error(f"Error processing {page.url}: {e}")
                continue

            result = parse_completion(completion, key=field)
            if not isinstance(result, ArrayResult):
                report.pages_failed += 1
                logger.warning(f"Empty or malformed result for {page.url}")
                continue

            report.pages_processed += 1
            labels: list[str] = []
            for label, text in extract_label_items(result.items, field):
                if not label or len(text) < self.min_contribution_chars:
                    report.items_skipped += 1
                    logger.warning(f"Skipping weak or empty content for label {label!r}")
                    continue
                try:
                    await self.merger.merge(collection, label, text, page.url, label_key=field)
                except EmbeddingError as e:
                    report.items_skipped += 1
                    logger.warning(f"Embedding failed for {label!r}: {e}")
                    continue
                report.items_merged += 1
                labels.append(label)
            report.page_labels[page.url] = labels

        logger.info(
            f"Label context for {collection!r}: {report.pages_processed} pages, "
            f"{report.items_merged} items merged, {report.items_skipped} skipped"
        )
        return report
