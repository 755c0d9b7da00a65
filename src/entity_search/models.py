"""Pydantic models for semantic search data structures.

All data flowing through the engine is validated against these schemas.
This ensures fail-fast behavior and type safety throughout the pipeline.
"""

import math
from datetime import datetime
from typing import Literal, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ChunkMetadata(BaseModel):
    """Metadata attached to every stored chunk.

    Attributes:
        entity_type: Logical entity type (e.g., "products", "bookings")
        entity_id: Identifier of the entity within its type
        timestamp: Time the chunk was added, in milliseconds since the epoch
    """

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    timestamp: int = Field(ge=0)


class ChunkRecord(BaseModel):
    """A single embedded text chunk held by a vector store.

    Attributes:
        id: Unique identifier using format: {entity_type}:{entity_id}:{seq}
        text: Raw chunk text content
        vector: Embedding vector
        metadata: Owning entity and insertion time
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    vector: list[float] = Field(min_length=1)
    metadata: ChunkMetadata

    @field_validator("vector")
    @classmethod
    def validate_vector_values(cls, v: list[float]) -> list[float]:
        """Ensure vector contains valid finite floats."""
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v

    @property
    def entity_key(self) -> tuple[str, str]:
        return (self.metadata.entity_type, self.metadata.entity_id)


class ScoredChunk(BaseModel):
    """A stored chunk paired with its similarity to a query vector."""

    model_config = ConfigDict(frozen=True)

    record: ChunkRecord
    similarity: float = Field(ge=-1.0, le=1.0)


class SearchResult(BaseModel):
    """A single entity-level search hit.

    Attributes:
        entity_id: Matched entity identifier
        entity_type: Matched entity type
        similarity: Best chunk similarity for the entity (-1.0 to 1.0, higher is better)
    """

    entity_id: str
    entity_type: str
    similarity: float = Field(ge=-1.0, le=1.0)


class SearchRequest(BaseModel):
    """A semantic search query request.

    Attributes:
        query: Natural language search query (blank queries yield no results)
        entity_type: Optional entity type filter
        limit: Maximum number of entities to return (default 5)
        min_similarity: Optional similarity threshold applied after grouping
    """

    query: str = Field(max_length=1000)
    entity_type: str | None = None
    limit: int = Field(default=5, ge=1, le=100)
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)


class EntityChange(BaseModel):
    """A change notification from an entity data source.

    Attributes:
        action: "upsert" to (re)index the record, "delete" to drop it
        entity_type: Entity type
        entity_id: Entity identifier
        record: Entity fields; required for upserts
    """

    action: Literal["upsert", "delete"]
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    record: dict[str, object] | None = None

    @model_validator(mode="after")
    def validate_record(self) -> "EntityChange":
        """Upserts must carry the record to index."""
        if self.action == "upsert" and self.record is None:
            raise ValueError("record is required for upsert changes")
        return self


class StoreStats(BaseModel):
    """Statistics about a vector store.

    Attributes:
        total_chunks: Total number of chunks in the store
        total_entities: Number of distinct (entity_type, entity_id) pairs
        entity_types: Chunk counts per entity type
        dimensions: Fixed vector dimensionality, None while empty
        last_updated: Time of the last mutation, None if never mutated
    """

    total_chunks: int = Field(ge=0)
    total_entities: int = Field(ge=0)
    entity_types: dict[str, int] = Field(default_factory=dict)
    dimensions: int | None = None
    last_updated: datetime | None = None


class IndexReport(TypedDict):
    entity_type: str
    entity_id: str
    indexed_count: int
    chunk_ids: list[str]
