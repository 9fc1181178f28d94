"""Local persistence for the flat index, its document map and build record.

Layout inside the data directory::

    vector_index.json   {dim, nbDocs, flatArray}
    doc_mapping.json    [{source, chunkIndex, totalChunks[, text]}, ...]
    index_meta.json     BuildRecord

The three files are written together as one snapshot at the end of an
indexing run, under a file lock, each through a temp file + atomic replace.
Readers of the previous snapshot keep seeing a consistent (if stale) state.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock
from loguru import logger
from pydantic import ValidationError

from content_index.build_state import load_build_record
from content_index.document_map import DocumentMap
from content_index.errors import SnapshotIntegrityError
from content_index.index import FlatIndex
from content_index.models import BuildRecord, IndexSnapshot


@dataclass
class LoadedIndex:
    """A snapshot loaded from disk."""

    index: FlatIndex
    document_map: DocumentMap
    record: BuildRecord | None


class IndexStore:
    """Reads and writes index snapshots in a data directory.

    Thread/Process Safety:
        - Writes are serialized via a directory-level file lock (30s timeout)
        - Reads take the same lock so they never observe a half-written set
    """

    def __init__(
        self,
        directory: Path | str,
        snapshot_file: str = "vector_index.json",
        map_file: str = "doc_mapping.json",
        meta_file: str = "index_meta.json",
        lock_timeout: float = 30.0,
    ):
        self.directory = Path(directory)
        self.snapshot_path = self.directory / snapshot_file
        self.map_path = self.directory / map_file
        self.meta_path = self.directory / meta_file
        self.lock_path = self.directory / ".index.lock"
        self.lock_timeout = lock_timeout

    def exists(self) -> bool:
        return self.snapshot_path.exists() and self.map_path.exists()

    def save(self, index: FlatIndex, document_map: DocumentMap, record: BuildRecord) -> Path:
        """Persist index, map and build record as one snapshot.

        Raises:
            SnapshotIntegrityError: If the map is not parallel to the index
        """
        if len(document_map) != len(index):
            raise SnapshotIntegrityError(
                f"Refusing to save: {len(index)} vectors but {len(document_map)} map entries"
            )

        self.directory.mkdir(parents=True, exist_ok=True)
        snapshot = index.to_snapshot()

        with FileLock(self.lock_path, timeout=self.lock_timeout):
            self._write_atomic(self.snapshot_path, snapshot.model_dump_json(by_alias=True))
            self._write_atomic(self.map_path, json.dumps(document_map.to_list(), indent=2))
            self._write_atomic(self.meta_path, record.model_dump_json(indent=2))

        logger.info(
            f"Saved index snapshot with {snapshot.nb_docs} vectors (dim {snapshot.dim}) "
            f"to {self.directory}"
        )
        return self.snapshot_path

    def load(self) -> LoadedIndex:
        """Load the persisted snapshot.

        Raises:
            FileNotFoundError: If no snapshot has been written
            SnapshotIntegrityError: If files are malformed or out of lockstep
        """
        if not self.exists():
            raise FileNotFoundError(f"No index snapshot found in {self.directory}")

        with FileLock(self.lock_path, timeout=self.lock_timeout):
            try:
                snapshot = IndexSnapshot.model_validate_json(self.snapshot_path.read_text())
                raw_map = json.loads(self.map_path.read_text())
                document_map = DocumentMap.from_list(raw_map)
            except (ValidationError, json.JSONDecodeError, TypeError) as e:
                raise SnapshotIntegrityError(
                    f"Corrupt index snapshot in {self.directory}: {e}"
                ) from e
            record = load_build_record(self.meta_path)

        if snapshot.nb_docs != len(document_map):
            raise SnapshotIntegrityError(
                f"Snapshot has {snapshot.nb_docs} vectors but document map has "
                f"{len(document_map)} entries"
            )

        return LoadedIndex(
            index=FlatIndex.from_snapshot(snapshot),
            document_map=document_map,
            record=record,
        )

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(content)
        os.replace(tmp_path, path)
