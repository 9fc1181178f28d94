"""Ordinal-to-provenance lookup kept parallel to the flat index."""

from collections.abc import Iterator
from typing import Any

from content_index.errors import RetrievalLookupError
from content_index.models import DocumentMapEntry


class DocumentMap:
    """Append-only list of chunk provenance, indexed by ordinal."""

    def __init__(self, entries: list[DocumentMapEntry] | None = None):
        self._entries: list[DocumentMapEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DocumentMapEntry]:
        return iter(self._entries)

    def append(self, entry: DocumentMapEntry) -> int:
        """Append an entry and return its ordinal."""
        self._entries.append(entry)
        return len(self._entries) - 1

    def lookup(self, ordinal: int) -> DocumentMapEntry:
        """Resolve an ordinal to its provenance.

        Raises:
            RetrievalLookupError: If the ordinal is outside the map
        """
        if ordinal < 0 or ordinal >= len(self._entries):
            raise RetrievalLookupError(ordinal, len(self._entries))
        return self._entries[ordinal]

    def sources(self) -> list[str]:
        """Distinct source ids in first-indexed order."""
        return list(dict.fromkeys(entry.source for entry in self._entries))

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.model_dump(by_alias=True, exclude_none=True) for entry in self._entries]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> "DocumentMap":
        return cls([DocumentMapEntry.model_validate(item) for item in data])
