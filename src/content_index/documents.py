"""Document and page stores consumed by indexing, retrieval and reporting.

A document store enumerates ``(document_id, raw_text)`` pairs and can fetch
one document's text again by id (retrieval re-chunks sources whose chunk text
was not persisted). Where the raw text came from (scraping, extraction) is
outside this package.
"""

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from loguru import logger

from content_index.errors import ChunkingError
from content_index.models import PageRecord

DEFAULT_SUFFIXES = (".txt", ".md", ".json")
INDEX_FILES = frozenset({"vector_index.json", "doc_mapping.json", "index_meta.json"})


class DocumentStore(Protocol):
    """Protocol for document sources."""

    def list_ids(self) -> list[str]:
        """Return document ids in a stable order."""
        ...

    def get(self, document_id: str) -> str:
        """Return the raw text of a document.

        Raises:
            KeyError: If the document does not exist
            ChunkingError: If the document has no usable text field
        """
        ...


class InMemoryDocumentStore:
    """Document store backed by a mapping (insertion order is preserved)."""

    def __init__(self, documents: Mapping[str, str] | None = None):
        self._documents = dict(documents or {})

    def add(self, document_id: str, text: str) -> None:
        self._documents[document_id] = text

    def list_ids(self) -> list[str]:
        return list(self._documents)

    def get(self, document_id: str) -> str:
        return self._documents[document_id]


class DirectoryDocumentStore:
    """Reads ``.txt``, ``.md`` and ``.json`` documents from a directory.

    JSON documents must carry their text in a ``content`` field. Index
    artifacts written by ``IndexStore`` are never treated as documents.
    """

    def __init__(
        self,
        directory: Path | str,
        suffixes: tuple[str, ...] = DEFAULT_SUFFIXES,
        content_field: str = "content",
    ):
        self.directory = Path(directory)
        self.suffixes = suffixes
        self.content_field = content_field

    def list_ids(self) -> list[str]:
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Data directory not found: {self.directory}")
        return sorted(
            path.name
            for path in self.directory.iterdir()
            if path.is_file() and path.suffix in self.suffixes and path.name not in INDEX_FILES
        )

    def get(self, document_id: str) -> str:
        path = self.directory / document_id
        if not path.is_file():
            raise KeyError(document_id)

        raw = path.read_text(encoding="utf-8")
        if path.suffix != ".json":
            return raw

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ChunkingError(f"Invalid JSON in {document_id}: {e}") from e

        content = parsed.get(self.content_field) if isinstance(parsed, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ChunkingError(
                f"File {document_id} does not have a {self.content_field!r} field"
            )
        return content


class ChainedDocumentStore:
    """Looks documents up in several stores, first match wins."""

    def __init__(self, stores: list[DocumentStore]):
        self.stores = list(stores)

    def list_ids(self) -> list[str]:
        return list(dict.fromkeys(i for store in self.stores for i in store.list_ids()))

    def get(self, document_id: str) -> str:
        for store in self.stores:
            try:
                return store.get(document_id)
            except KeyError:
                continue
        raise KeyError(document_id)


class DirectoryPageStore:
    """Enumerates enriched page records stored as JSON files.

    Each file holds one page's field data (``summary``, ``interests``,
    ``segments``, ...). The page URL is taken from the ``url`` field when
    present, otherwise the file name is used. ``source`` is always the file
    name, which is also the id the document store indexes it under.
    """

    def __init__(self, directory: Path | str, url_field: str = "url"):
        self.directory = Path(directory)
        self.url_field = url_field

    def pages(self) -> list[PageRecord]:
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Data directory not found: {self.directory}")

        records: list[PageRecord] = []
        for path in sorted(self.directory.glob("*.json")):
            if path.name in INDEX_FILES:
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"Skipping invalid JSON file {path.name}: {e}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"Skipping {path.name}: page data is not an object")
                continue

            url = data.get(self.url_field)
            records.append(
                PageRecord(
                    url=url if isinstance(url, str) and url else path.name,
                    source=path.name,
                    data=data,
                )
            )
        return records
