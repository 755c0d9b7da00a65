"""Embedded semantic search over entity records.

This package turns free-form entity records into searchable vectors and answers
similarity queries at entity granularity.

Architecture:
    - chunking: Bounded, overlapping text splitting
    - embedding: Provider abstraction and readiness-gated embedding client
    - store: In-memory and Parquet-backed chunk record stores
    - ranking: Exact cosine-similarity ranking
    - indexing: Entity record -> chunks -> vectors -> store
    - search: Rank-then-group entity search with max-score reduction
    - query: Debounced query façade with stale-response suppression
    - models: Pydantic schemas for chunks, results, and change notifications

Usage:
    >>> from entity_search import SemanticSearchEngine, load_config
    >>> engine = SemanticSearchEngine.from_config(load_config("default"))
    >>> await engine.start()
    >>> results = await engine.search("red shoes", entity_type="products")
"""

__version__ = "0.1.0"

from entity_search.config import SemanticSearchConfig, load_config
from entity_search.engine import SemanticSearchEngine
from entity_search.exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    IndexingError,
    ModelLoadError,
    NotReadyError,
    SearchError,
    SemanticSearchError,
)
from entity_search.models import ChunkMetadata, ChunkRecord, EntityChange, SearchResult

__all__ = [
    "ChunkMetadata",
    "ChunkRecord",
    "DimensionMismatchError",
    "EmbeddingError",
    "EntityChange",
    "IndexingError",
    "ModelLoadError",
    "NotReadyError",
    "SearchError",
    "SearchResult",
    "SemanticSearchConfig",
    "SemanticSearchEngine",
    "SemanticSearchError",
    "load_config",
]
