"""Entity indexing workflow.

Combines record serialization, chunking, embedding, and vector storage.
"""

import time
from collections.abc import Mapping
from enum import Enum
from typing import Any

from loguru import logger

from entity_search.chunking import ChunkingConfig, create_chunker
from entity_search.embedding import EmbeddingClient
from entity_search.exceptions import EmbeddingError, IndexingError
from entity_search.models import ChunkMetadata, ChunkRecord, EntityChange, IndexReport
from entity_search.store import VectorStore


class FailurePolicy(str, Enum):
    """What happens to already-stored chunks when a later chunk fails.

    BEST_EFFORT keeps them; callers needing atomicity remove the entity before
    retrying. ATOMIC removes the chunks added by the failed call.
    """

    BEST_EFFORT = "best_effort"
    ATOMIC = "atomic"


def entity_to_text(record: Mapping[str, Any]) -> str:
    """Serialize an entity record into a text document.

    Every non-null field becomes one ``key: value`` line, in the record's own order.

    Example:
        >>> entity_to_text({"name": "Red Shoes", "size": None, "price": 40})
        'name: Red Shoes\\nprice: 40'
    """
    return "\n".join(f"{key}: {value}" for key, value in record.items() if value is not None)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class EntityIndexer:
    """Indexes entity records into a vector store.

    Handles the complete workflow:
    1. Serialize the record to text
    2. Chunk the text
    3. Embed each chunk
    4. Store each chunk with its entity metadata
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: VectorStore,
        chunking_config: ChunkingConfig | None = None,
        failure_policy: FailurePolicy = FailurePolicy.BEST_EFFORT,
    ):
        """Initialize entity indexer.

        Args:
            embedding_client: Loaded client for generating embeddings
            store: Vector store for chunk records
            chunking_config: Configuration for text chunking (uses defaults if None)
            failure_policy: Handling of chunks stored before a mid-entity failure
        """
        self.embedding_client = embedding_client
        self.store = store
        self.chunker = create_chunker(chunking_config or ChunkingConfig())
        self.failure_policy = failure_policy

    async def index_entity(
        self, entity_type: str, entity_id: str, record: Mapping[str, Any]
    ) -> IndexReport:
        """Index one entity record.

        Indexing the same entity twice without removing it first keeps both
        sets of chunks; use reindex_entity to replace them.

        Args:
            entity_type: Entity type (e.g., "products")
            entity_id: Entity identifier
            record: Entity fields

        Returns:
            Report with the number and ids of chunks stored

        Raises:
            IndexingError: If embedding a chunk fails
            NotReadyError: If the store is not initialized
            DimensionMismatchError: If a vector does not fit the store
        """
        text = entity_to_text(record)
        chunks = self.chunker.chunk(text)

        if not chunks:
            logger.warning(f"No indexable content for entity {entity_type}:{entity_id}")
            return {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "indexed_count": 0,
                "chunk_ids": [],
            }

        chunk_ids: list[str] = []
        try:
            for chunk in chunks:
                try:
                    vector = await self.embedding_client.embed(chunk.text)
                except EmbeddingError as e:
                    raise IndexingError(
                        f"Failed to embed chunk {chunk.chunk_index} of {entity_type}:{entity_id}: "
                        f"{e.message}",
                        entity_type=entity_type,
                        entity_id=entity_id,
                        chunk_index=chunk.chunk_index,
                    ) from e

                metadata = ChunkMetadata(
                    entity_type=entity_type, entity_id=entity_id, timestamp=now_ms()
                )
                chunk_ids.append(await self.store.add(chunk.text, vector, metadata))
        except BaseException:
            # Cancellation also rolls back under the atomic policy
            await self._handle_partial_failure(entity_type, entity_id, chunk_ids)
            raise

        logger.info(f"Indexed entity {entity_type}:{entity_id} ({len(chunk_ids)} chunks)")
        return {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "indexed_count": len(chunk_ids),
            "chunk_ids": chunk_ids,
        }

    async def _handle_partial_failure(
        self, entity_type: str, entity_id: str, chunk_ids: list[str]
    ) -> None:
        if not chunk_ids:
            return
        if self.failure_policy is FailurePolicy.ATOMIC:
            try:
                removed = await self.store.delete_ids(chunk_ids)
            except Exception as rollback_error:
                logger.error(
                    f"Rollback of {len(chunk_ids)} chunks of {entity_type}:{entity_id} failed: "
                    f"{rollback_error}"
                )
                return
            logger.warning(
                f"Rolled back {removed} chunks of {entity_type}:{entity_id} after failure"
            )
        else:
            logger.warning(
                f"Indexing {entity_type}:{entity_id} failed after {len(chunk_ids)} chunks; "
                f"stored chunks were kept"
            )

    async def remove_entity(self, entity_type: str, entity_id: str) -> int:
        """Remove every chunk of an entity.

        Returns:
            Number of chunks removed
        """

        def matches(record: ChunkRecord) -> bool:
            return (
                record.metadata.entity_type == entity_type
                and record.metadata.entity_id == entity_id
            )

        removed = await self.store.delete(matches)
        logger.info(f"Removed entity {entity_type}:{entity_id} ({removed} chunks)")
        return removed

    async def reindex_entity(
        self, entity_type: str, entity_id: str, record: Mapping[str, Any]
    ) -> IndexReport:
        """Replace an entity's chunks: remove, then index the new record."""
        await self.remove_entity(entity_type, entity_id)
        return await self.index_entity(entity_type, entity_id, record)

    async def apply_change(self, change: EntityChange) -> IndexReport | int:
        """Apply a data-source change notification.

        Returns:
            IndexReport for upserts, number of chunks removed for deletes

        Raises:
            ValueError: If an upsert carries no record
        """
        if change.action == "delete":
            return await self.remove_entity(change.entity_type, change.entity_id)
        if change.record is None:
            raise ValueError(
                f"record is required for upsert of {change.entity_type}:{change.entity_id}"
            )
        return await self.reindex_entity(change.entity_type, change.entity_id, change.record)
