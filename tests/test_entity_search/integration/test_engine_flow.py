"""Integration tests for the assembled engine.

Exercises index, search, remove and restart through SemanticSearchEngine with
the offline fake provider and both store backends.
"""

# mypy: disable-error-code="no-untyped-def"

import asyncio
from pathlib import Path

import pytest

from entity_search.config import SemanticSearchConfig
from entity_search.engine import SemanticSearchEngine
from entity_search.models import EntityChange
from entity_search.store import InMemoryVectorStore, ParquetVectorStore

PRODUCTS = {
    "p1": {"name": "Red Shoes", "category": "Footwear"},
    "p2": {"name": "Blue Hat", "category": "Accessories"},
    "p3": {"name": "Running Shoes", "category": "Footwear", "color": None},
}


def make_config(tmp_path: Path | None = None, **sections) -> SemanticSearchConfig:
    store = {"backend": "memory"}
    if tmp_path is not None:
        store = {"backend": "parquet", "path": str(tmp_path / "store")}
    return SemanticSearchConfig(
        embedding={"model": "local/all-MiniLM-L6-v2", "version": "v1"},  # type: ignore[arg-type]
        store={**store, **sections.pop("store", {})},  # type: ignore[arg-type]
        **sections,
    )


async def started(config: SemanticSearchConfig, provider) -> SemanticSearchEngine:
    engine = SemanticSearchEngine.from_config(config, provider=provider)
    await engine.start()
    for entity_id, record in PRODUCTS.items():
        await engine.index_entity("products", entity_id, record)
    return engine


class TestEngineInMemory:
    """Engine over the in-memory store."""

    def test_from_config_builds_memory_store(self, fake_provider) -> None:
        engine = SemanticSearchEngine.from_config(make_config(), provider=fake_provider)
        assert isinstance(engine.store, InMemoryVectorStore)
        assert engine.query.debounce_seconds == 0.3

    @pytest.mark.asyncio
    async def test_start_loads_model_once(self, fake_provider) -> None:
        engine = SemanticSearchEngine.from_config(make_config(), provider=fake_provider)

        await asyncio.gather(engine.start(), engine.embedding_client.load())

        assert fake_provider.load_calls == 1
        assert engine.embedding_client.is_ready

    @pytest.mark.asyncio
    async def test_index_search_remove(self, fake_provider) -> None:
        engine = await started(make_config(), fake_provider)

        results = await engine.search("shoes", entity_type="products")
        assert {r.entity_id for r in results[:2]} == {"p1", "p3"}
        assert results[-1].entity_id == "p2"

        await engine.remove_entity("products", "p1")
        results = await engine.search("red shoes")
        assert "p1" not in [r.entity_id for r in results]

    @pytest.mark.asyncio
    async def test_apply_change_flow(self, fake_provider) -> None:
        engine = await started(make_config(), fake_provider)

        await engine.apply_change(
            EntityChange(
                action="upsert",
                entity_type="products",
                entity_id="p2",
                record={"name": "Blue Shoes", "category": "Footwear"},
            )
        )
        stats = await engine.stats()
        assert stats.total_chunks == 3

        [top] = await engine.search("blue", limit=1)
        assert top.entity_id == "p2"

        await engine.apply_change(
            EntityChange(action="delete", entity_type="products", entity_id="p2")
        )
        assert (await engine.stats()).total_entities == 2

    @pytest.mark.asyncio
    async def test_query_facade(self, fake_provider) -> None:
        config = make_config(query={"debounce_seconds": 0.0})
        engine = await started(config, fake_provider)

        state = await engine.query.submit("hat", entity_type="products", limit=1)

        assert [r.entity_id for r in state.results] == ["p2"]
        assert not state.pending

    @pytest.mark.asyncio
    async def test_configured_search_defaults(self, fake_provider) -> None:
        config = make_config(search={"default_limit": 1})
        engine = await started(config, fake_provider)

        assert len(await engine.search("footwear")) == 1


class TestEngineParquet:
    """Engine over the persistent store, including restarts."""

    @pytest.mark.asyncio
    async def test_results_survive_restart(self, tmp_path: Path, fake_provider) -> None:
        config = make_config(tmp_path)
        first = await started(config, fake_provider)
        expected = await first.search("shoes")

        second = SemanticSearchEngine.from_config(config, provider=fake_provider)
        await second.start()

        assert isinstance(second.store, ParquetVectorStore)
        assert await second.search("shoes") == expected

    def test_relative_path_resolved_against_base_dir(
        self, tmp_path: Path, fake_provider
    ) -> None:
        config = make_config(store={"backend": "parquet", "path": "relative/store"})

        engine = SemanticSearchEngine.from_config(config, provider=fake_provider, base_dir=tmp_path)

        assert isinstance(engine.store, ParquetVectorStore)
        assert engine.store.base_path == tmp_path / "relative" / "store"

    @pytest.mark.asyncio
    async def test_version_change_clears_store(self, tmp_path: Path, fake_provider) -> None:
        await started(make_config(tmp_path), fake_provider)

        upgraded = make_config(tmp_path)
        upgraded.embedding.version = "v2"
        engine = SemanticSearchEngine.from_config(upgraded, provider=fake_provider)
        await engine.start()

        assert (await engine.stats()).total_chunks == 0

    @pytest.mark.asyncio
    async def test_version_change_without_rebuild_fails(
        self, tmp_path: Path, fake_provider
    ) -> None:
        await started(make_config(tmp_path), fake_provider)

        pinned = make_config(tmp_path, store={"rebuild_on_version_change": False})
        pinned.embedding.version = "v2"
        engine = SemanticSearchEngine.from_config(pinned, provider=fake_provider)

        with pytest.raises(RuntimeError, match="embedding version 'v1'"):
            await engine.start()
