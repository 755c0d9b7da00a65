"""Vector record storage.

Provides a unified interface for chunk storage backends with:
- Append with per-entity id sequences that are never reused
- Predicate-based, all-or-nothing deletion
- Snapshot scans for linear ranking
- Parquet-backed local persistence with file locking
"""

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pyarrow as pa
from filelock import FileLock
from loguru import logger

from entity_search.exceptions import DimensionMismatchError, NotReadyError
from entity_search.manifest import StoreManifest, load_manifest, save_manifest
from entity_search.models import ChunkMetadata, ChunkRecord, StoreStats

ChunkPredicate = Callable[[ChunkRecord], bool]

CHUNK_COLUMNS = ["id", "text", "vector", "entity_type", "entity_id", "timestamp"]

CHUNK_SCHEMA = pa.schema(
    [
        ("id", pa.string()),
        ("text", pa.string()),
        ("vector", pa.list_(pa.float64())),
        ("entity_type", pa.string()),
        ("entity_id", pa.string()),
        ("timestamp", pa.int64()),
    ]
)


def entity_key(entity_type: str, entity_id: str) -> str:
    return f"{entity_type}:{entity_id}"


class VectorStore(ABC):
    """Abstract base class for chunk record stores."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the store for use. Idempotent."""
        ...

    @abstractmethod
    async def add(self, text: str, vector: list[float], metadata: ChunkMetadata) -> str:
        """Append a chunk record.

        Args:
            text: Chunk text
            vector: Chunk embedding
            metadata: Owning entity and timestamp

        Returns:
            The new record's id

        Raises:
            NotReadyError: If initialize() has not completed
            DimensionMismatchError: If the vector length differs from the stored vectors
        """
        ...

    @abstractmethod
    async def delete(self, predicate: ChunkPredicate) -> int:
        """Remove every record matching the predicate.

        Either all matching records are removed or none are.

        Returns:
            Number of records removed
        """
        ...

    @abstractmethod
    async def delete_ids(self, ids: Iterable[str]) -> int:
        """Remove records by id. Unknown ids are ignored.

        Returns:
            Number of records removed
        """
        ...

    @abstractmethod
    async def scan(self) -> list[ChunkRecord]:
        """Return a snapshot of every stored record in insertion order."""
        ...

    @abstractmethod
    async def clear(self) -> int:
        """Remove every record and release the fixed dimensionality.

        Returns:
            Number of records removed
        """
        ...

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Get store statistics."""
        ...


class InMemoryVectorStore(VectorStore):
    """Arena-style in-memory store.

    Records live in an insertion-ordered dict keyed by id. Mutations build the
    next state and swap it in under a lock, so a scan in progress keeps its own
    snapshot and never observes a partially applied change.
    """

    def __init__(self) -> None:
        self._records: dict[str, ChunkRecord] = {}
        self._sequences: dict[str, int] = {}
        self._dimensions: int | None = None
        self._last_updated: datetime | None = None
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    async def initialize(self) -> None:
        self._initialized = True

    def _require_ready(self, operation: str) -> None:
        if not self._initialized:
            raise NotReadyError(
                "Vector store not initialized. Call initialize() first.",
                {"operation": operation},
            )

    async def _commit(
        self,
        records: Mapping[str, ChunkRecord],
        sequences: Mapping[str, int],
        dimensions: int | None,
    ) -> None:
        """Persist the next state before it becomes visible. No-op in memory."""

    async def add(self, text: str, vector: list[float], metadata: ChunkMetadata) -> str:
        self._require_ready("add")

        async with self._lock:
            if self._dimensions is not None and len(vector) != self._dimensions:
                raise DimensionMismatchError(
                    self._dimensions,
                    len(vector),
                    {"entity_type": metadata.entity_type, "entity_id": metadata.entity_id},
                )

            key = entity_key(metadata.entity_type, metadata.entity_id)
            seq = self._sequences.get(key, 0)
            record = ChunkRecord(id=f"{key}:{seq}", text=text, vector=list(vector), metadata=metadata)

            records = {**self._records, record.id: record}
            sequences = {**self._sequences, key: seq + 1}
            dimensions = len(vector)

            await self._commit(records, sequences, dimensions)
            self._records, self._sequences, self._dimensions = records, sequences, dimensions
            self._last_updated = datetime.now(UTC)

        logger.debug(f"Added chunk {record.id} ({len(text)} chars)")
        return record.id

    async def delete(self, predicate: ChunkPredicate) -> int:
        self._require_ready("delete")

        async with self._lock:
            # Evaluate the predicate fully before touching anything
            doomed = {record.id for record in self._records.values() if predicate(record)}
            return await self._remove(doomed)

    async def delete_ids(self, ids: Iterable[str]) -> int:
        self._require_ready("delete_ids")

        async with self._lock:
            doomed = {record_id for record_id in ids if record_id in self._records}
            return await self._remove(doomed)

    async def _remove(self, doomed: set[str]) -> int:
        if not doomed:
            return 0
        records = {k: v for k, v in self._records.items() if k not in doomed}
        await self._commit(records, self._sequences, self._dimensions)
        self._records = records
        self._last_updated = datetime.now(UTC)
        logger.debug(f"Removed {len(doomed)} chunks")
        return len(doomed)

    async def scan(self) -> list[ChunkRecord]:
        self._require_ready("scan")
        return list(self._records.values())

    async def clear(self) -> int:
        self._require_ready("clear")

        async with self._lock:
            removed = len(self._records)
            await self._commit({}, self._sequences, None)
            self._records = {}
            self._dimensions = None
            self._last_updated = datetime.now(UTC)
        return removed

    async def stats(self) -> StoreStats:
        self._require_ready("stats")
        records = list(self._records.values())
        entity_types: dict[str, int] = {}
        for record in records:
            entity_types[record.metadata.entity_type] = (
                entity_types.get(record.metadata.entity_type, 0) + 1
            )
        return StoreStats(
            total_chunks=len(records),
            total_entities=len({record.entity_key for record in records}),
            entity_types=entity_types,
            dimensions=self._dimensions,
            last_updated=self._last_updated,
        )


class ParquetVectorStore(InMemoryVectorStore):
    """Parquet-backed persistent store with concurrent write safety.

    The full chunk table lives in memory for ranking; every mutation rewrites
    ``{table_name}.parquet`` under a file lock, via a temporary file and an
    atomic rename, before the new state becomes visible. A JSON manifest next
    to the table keeps the fixed dimensionality, id sequence counters and
    embedding version across restarts.

    Vectors are stored as float64 lists and round-trip exactly.
    """

    def __init__(
        self,
        base_path: Path,
        table_name: str = "chunks",
        embedding_version: str | None = None,
        config_fingerprint: str | None = None,
        lock_timeout_seconds: float = 30.0,
    ):
        """Initialize the persistent store.

        Args:
            base_path: Directory holding the table and manifest
            table_name: File stem for the Parquet table and manifest
            embedding_version: Embedding version recorded in the manifest
            config_fingerprint: Config fingerprint recorded in the manifest
            lock_timeout_seconds: File lock acquisition timeout
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.table_name = table_name
        self.embedding_version = embedding_version
        self.config_fingerprint = config_fingerprint
        self.lock_timeout_seconds = lock_timeout_seconds
        self.manifest: StoreManifest | None = None

    @property
    def table_path(self) -> Path:
        return self.base_path / f"{self.table_name}.parquet"

    @property
    def manifest_path(self) -> Path:
        return self.base_path / f"{self.table_name}.manifest.json"

    @property
    def lock_path(self) -> Path:
        return self.base_path / f".{self.table_name}.lock"

    async def initialize(self) -> None:
        """Create the storage directory and load any persisted records."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return
            records, manifest = await asyncio.to_thread(self._load)
            self._records = {record.id: record for record in records}
            self._sequences = dict(manifest.sequences)
            self._dimensions = manifest.dimensions
            self._last_updated = manifest.updated_at
            self.manifest = manifest
            self._initialized = True

        logger.info(f"Loaded {len(self._records)} chunks from {self.table_path}")

    def _load(self) -> tuple[list[ChunkRecord], StoreManifest]:
        import pandas as pd

        self.base_path.mkdir(parents=True, exist_ok=True)

        with FileLock(self.lock_path, timeout=self.lock_timeout_seconds):
            manifest = load_manifest(self.manifest_path) or StoreManifest()
            if not self.table_path.exists():
                return [], manifest

            df = pd.read_parquet(self.table_path, engine="pyarrow")

        records = [_row_to_record(row) for row in df.to_dict("records")]

        # Sequences must stay ahead of every stored id, even with a stale manifest
        for record in records:
            key = entity_key(record.metadata.entity_type, record.metadata.entity_id)
            seq = int(record.id.rsplit(":", 1)[1])
            manifest.sequences[key] = max(manifest.sequences.get(key, 0), seq + 1)
        if records and manifest.dimensions is None:
            manifest.dimensions = len(records[0].vector)

        return records, manifest

    async def _commit(
        self,
        records: Mapping[str, ChunkRecord],
        sequences: Mapping[str, int],
        dimensions: int | None,
    ) -> None:
        await asyncio.to_thread(self._write, list(records.values()), dict(sequences), dimensions)

    def _write(
        self, records: list[ChunkRecord], sequences: dict[str, int], dimensions: int | None
    ) -> None:
        import pandas as pd

        df = pd.DataFrame([_record_to_row(record) for record in records], columns=CHUNK_COLUMNS)
        manifest = StoreManifest(
            dimensions=dimensions,
            sequences=sequences,
            embedding_version=self.embedding_version,
            config_fingerprint=self.config_fingerprint,
        )

        with FileLock(self.lock_path, timeout=self.lock_timeout_seconds):
            tmp_path = self.table_path.with_suffix(".parquet.tmp")
            df.to_parquet(
                tmp_path, engine="pyarrow", compression="snappy", index=False, schema=CHUNK_SCHEMA
            )
            os.replace(tmp_path, self.table_path)
            save_manifest(self.manifest_path, manifest)

        self.manifest = manifest


def _record_to_row(record: ChunkRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "text": record.text,
        "vector": record.vector,
        # Flatten metadata
        "entity_type": record.metadata.entity_type,
        "entity_id": record.metadata.entity_id,
        "timestamp": record.metadata.timestamp,
    }


def _row_to_record(row: dict[str, Any]) -> ChunkRecord:
    # Parquet returns numpy arrays for list columns
    return ChunkRecord(
        id=row["id"],
        text=row["text"],
        vector=[float(value) for value in row["vector"]],
        metadata=ChunkMetadata(
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            timestamp=int(row["timestamp"]),
        ),
    )


def create_store(
    backend: str,
    path: Path | None = None,
    table_name: str = "chunks",
    embedding_version: str | None = None,
    config_fingerprint: str | None = None,
    lock_timeout_seconds: float = 30.0,
) -> VectorStore:
    """Factory function to create a vector store for the configured backend.

    Raises:
        ValueError: For unknown backends or a parquet backend without a path
    """
    if backend == "memory":
        return InMemoryVectorStore()
    elif backend == "parquet":
        if path is None:
            raise ValueError("parquet backend requires a storage path")
        return ParquetVectorStore(
            Path(path),
            table_name=table_name,
            embedding_version=embedding_version,
            config_fingerprint=config_fingerprint,
            lock_timeout_seconds=lock_timeout_seconds,
        )
    else:
        raise ValueError(f"Unknown store backend {backend!r}. Expected 'memory' or 'parquet'")
