"""Engine assembly: wires providers, stores and services from configuration."""

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from loguru import logger

from entity_search.config import SemanticSearchConfig
from entity_search.embedding import (
    EmbeddingClient,
    EmbeddingProvider,
    create_embedding_provider,
)
from entity_search.indexing import EntityIndexer
from entity_search.manifest import compute_config_fingerprint, should_rebuild
from entity_search.models import EntityChange, IndexReport, SearchResult, StoreStats
from entity_search.query import SemanticQuery
from entity_search.search import SearchService
from entity_search.store import ParquetVectorStore, VectorStore, create_store


class SemanticSearchEngine:
    """Embedded semantic search over entity records.

    Example:
        >>> engine = SemanticSearchEngine.from_config(load_config("default"))
        >>> await engine.start()
        >>> await engine.index_entity("products", "p1", {"name": "Red Shoes"})
        >>> await engine.search("shoes", entity_type="products")
    """

    def __init__(
        self,
        config: SemanticSearchConfig,
        embedding_client: EmbeddingClient,
        store: VectorStore,
    ):
        self.config = config
        self.embedding_client = embedding_client
        self.store = store
        self.indexer = EntityIndexer(
            embedding_client,
            store,
            chunking_config=config.chunking,
            failure_policy=config.indexing.failure_policy,
        )
        self.search_service = SearchService(
            embedding_client,
            store,
            default_limit=config.search.default_limit,
            min_similarity=config.search.min_similarity,
        )
        self.query = SemanticQuery(
            self.search_service, debounce_seconds=config.query.debounce_seconds
        )

    @classmethod
    def from_config(
        cls,
        config: SemanticSearchConfig,
        provider: EmbeddingProvider | None = None,
        base_dir: Path | None = None,
    ) -> "SemanticSearchEngine":
        """Build an engine from configuration.

        Args:
            config: Validated configuration
            provider: Embedding provider override (defaults to the configured model)
            base_dir: Directory that relative store paths resolve against
        """
        path: Path | None = None
        if config.store.path is not None:
            path = Path(config.store.path)
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path

        store = create_store(
            config.store.backend,
            path=path,
            table_name=config.store.table_name,
            embedding_version=config.embedding.version,
            config_fingerprint=compute_config_fingerprint(config),
            lock_timeout_seconds=config.store.lock_timeout_seconds,
        )
        client = EmbeddingClient(provider or create_embedding_provider(config.embedding))
        return cls(config, client, store)

    async def start(self) -> None:
        """Initialize the store and load the embedding model concurrently.

        A persisted store built with another embedding version is cleared when
        store.rebuild_on_version_change is set.
        """
        await asyncio.gather(self.store.initialize(), self.embedding_client.load())

        if isinstance(self.store, ParquetVectorStore) and self.store.manifest is not None:
            if should_rebuild(
                self.store.manifest,
                self.config.embedding.version,
                compute_config_fingerprint(self.config),
            ):
                if not self.config.store.rebuild_on_version_change:
                    raise RuntimeError(
                        f"Persisted vectors in {self.store.table_path} were built with "
                        f"embedding version {self.store.manifest.embedding_version!r}; "
                        f"clear the store or enable store.rebuild_on_version_change"
                    )
                removed = await self.store.clear()
                logger.warning(
                    f"Cleared {removed} stale chunks built with a different embedding configuration"
                )

    async def index_entity(
        self, entity_type: str, entity_id: str, record: Mapping[str, Any]
    ) -> IndexReport:
        return await self.indexer.index_entity(entity_type, entity_id, record)

    async def reindex_entity(
        self, entity_type: str, entity_id: str, record: Mapping[str, Any]
    ) -> IndexReport:
        return await self.indexer.reindex_entity(entity_type, entity_id, record)

    async def remove_entity(self, entity_type: str, entity_id: str) -> int:
        return await self.indexer.remove_entity(entity_type, entity_id)

    async def apply_change(self, change: EntityChange) -> IndexReport | int:
        return await self.indexer.apply_change(change)

    async def search(
        self, query: str, entity_type: str | None = None, limit: int | None = None
    ) -> list[SearchResult]:
        return await self.search_service.search(query, entity_type=entity_type, limit=limit)

    async def stats(self) -> StoreStats:
        return await self.store.stats()
