"""Unit tests for embedding providers and the readiness-gated client."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import respx
from httpx import Response
from openai import RateLimitError

from entity_search.embedding import (
    EmbeddingClient,
    EmbeddingConfig,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    create_embedding_provider,
)
from entity_search.exceptions import EmbeddingError, ModelLoadError

OPENAI_URL = "https://api.openai.com/v1/embeddings"


def embedding_response(vector: list[float]) -> Response:
    return Response(
        200,
        json={
            "object": "list",
            "data": [{"object": "embedding", "embedding": vector, "index": 0}],
            "model": "text-embedding-3-small",
            "usage": {"prompt_tokens": 5, "total_tokens": 5},
        },
    )


@pytest.fixture
def openai_config() -> EmbeddingConfig:
    """Standard OpenAI embedding configuration for tests."""
    return EmbeddingConfig(
        model="openai/text-embedding-3-small",
        version="v1",
        dimensions=8,
        max_retries=3,
        timeout_seconds=10.0,
        api_key="sk-test-key",
    )


@pytest.fixture
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    sleep = AsyncMock()
    monkeypatch.setattr("entity_search.embedding.asyncio.sleep", sleep)
    return sleep


class TestEmbeddingConfig:
    """Tests for EmbeddingConfig validation."""

    def test_defaults(self) -> None:
        config = EmbeddingConfig(model="local/all-MiniLM-L6-v2")
        assert config.version == "v1"
        assert config.dimensions is None
        assert config.probe_text == "test"

    def test_invalid_dimensions(self) -> None:
        with pytest.raises(ValueError):
            EmbeddingConfig(model="test", dimensions=0)

        with pytest.raises(ValueError):
            EmbeddingConfig(model="test", dimensions=5000)

    def test_invalid_retries(self) -> None:
        with pytest.raises(ValueError):
            EmbeddingConfig(model="test", max_retries=0)


class TestEmbeddingClientLifecycle:
    """Tests for load() memoization and readiness gating."""

    @pytest.mark.asyncio
    async def test_embed_before_load_fails_fast(self, embedding_client, fake_provider) -> None:
        with pytest.raises(EmbeddingError, match="not loaded"):
            await embedding_client.embed("hello")
        assert fake_provider.embed_calls == []

    @pytest.mark.asyncio
    async def test_load_then_embed(self, embedding_client) -> None:
        await embedding_client.load()

        assert embedding_client.is_ready
        vector = await embedding_client.embed("red shoes")
        assert len(vector) == 128
        assert embedding_client.dimensions == 128

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_provider_load(
        self, embedding_client, fake_provider
    ) -> None:
        await asyncio.gather(*(embedding_client.load() for _ in range(5)))

        assert fake_provider.load_calls == 1
        assert embedding_client.is_ready

    @pytest.mark.asyncio
    async def test_load_after_success_is_noop(self, embedding_client, fake_provider) -> None:
        await embedding_client.load()
        await embedding_client.load()
        assert fake_provider.load_calls == 1

    @pytest.mark.asyncio
    async def test_failed_load_reaches_every_waiter(
        self, embedding_client, fake_provider
    ) -> None:
        fake_provider.fail_load = True

        outcomes = await asyncio.gather(
            *(embedding_client.load() for _ in range(3)), return_exceptions=True
        )

        assert fake_provider.load_calls == 1
        assert all(isinstance(o, ModelLoadError) for o in outcomes)
        assert not embedding_client.is_ready

    @pytest.mark.asyncio
    async def test_load_can_be_retried_after_failure(
        self, embedding_client, fake_provider
    ) -> None:
        fake_provider.fail_load = True
        with pytest.raises(ModelLoadError, match="model download failed"):
            await embedding_client.load()

        fake_provider.fail_load = False
        await embedding_client.load()

        assert fake_provider.load_calls == 2
        assert embedding_client.is_ready

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, embedding_client, fake_provider) -> None:
        await embedding_client.load()
        with pytest.raises(EmbeddingError, match="empty text"):
            await embedding_client.embed("   ")
        assert fake_provider.embed_calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_wrapped(self, embedding_client, fake_provider) -> None:
        await embedding_client.load()
        fake_provider.fail_on.add("boom")

        with pytest.raises(EmbeddingError, match="Embedding failed") as exc_info:
            await embedding_client.embed("boom")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_dimension_change_rejected(self, embedding_client, fake_provider) -> None:
        await embedding_client.load()
        await embedding_client.embed("first")
        fake_provider.overrides["second"] = [1.0, 0.0]

        with pytest.raises(EmbeddingError, match="changed embedding dimensionality"):
            await embedding_client.embed("second")


class TestOpenAIEmbeddingProvider:
    """Tests for the OpenAI provider."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_query_success(self, openai_config) -> None:
        route = respx.post(OPENAI_URL).mock(return_value=embedding_response([0.1] * 8))

        provider = OpenAIEmbeddingProvider(openai_config)
        vector = await provider.embed_query("Test text")

        assert len(vector) == 8
        assert all(isinstance(v, float) for v in vector)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_load_sends_probe(self, openai_config) -> None:
        route = respx.post(OPENAI_URL).mock(return_value=embedding_response([0.1] * 8))

        client = EmbeddingClient(OpenAIEmbeddingProvider(openai_config))
        await client.load()

        assert client.is_ready
        assert route.call_count == 1
        assert b"test" in route.calls[0].request.content

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_rate_limit(self, openai_config, no_backoff) -> None:
        respx.post(OPENAI_URL).mock(
            side_effect=[
                Response(429, json={"error": {"message": "Rate limit exceeded"}}),
                embedding_response([0.2] * 8),
            ]
        )

        provider = OpenAIEmbeddingProvider(openai_config)
        vector = await provider.embed_query("Test")

        assert vector == [0.2] * 8
        assert len(respx.calls) == 2
        no_backoff.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raises(self, openai_config, no_backoff) -> None:
        respx.post(OPENAI_URL).mock(
            return_value=Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )

        openai_config.max_retries = 2
        provider = OpenAIEmbeddingProvider(openai_config)

        with pytest.raises(RateLimitError):
            await provider.embed_query("Test")
        assert len(respx.calls) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_dimension_mismatch_raises(self, openai_config) -> None:
        respx.post(OPENAI_URL).mock(return_value=embedding_response([0.1] * 4))

        provider = OpenAIEmbeddingProvider(openai_config)

        with pytest.raises(ValueError, match="Expected 8 dimensions"):
            await provider.embed_query("Test")

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_wraps_provider_errors(self, openai_config) -> None:
        respx.post(OPENAI_URL).mock(
            side_effect=[
                embedding_response([0.1] * 8),
                Response(400, json={"error": {"message": "Invalid input"}}),
            ]
        )

        client = EmbeddingClient(OpenAIEmbeddingProvider(openai_config))
        await client.load()

        with pytest.raises(EmbeddingError, match="Embedding failed"):
            await client.embed("bad input")


class TestSentenceTransformerProvider:
    """Tests for the local provider (model loading is stubbed)."""

    @pytest.mark.asyncio
    async def test_embed_before_load_raises(self) -> None:
        provider = SentenceTransformerProvider(EmbeddingConfig(model="local/all-MiniLM-L6-v2"))
        with pytest.raises(RuntimeError, match="not loaded"):
            await provider.embed_query("text")

    @pytest.mark.asyncio
    async def test_load_and_encode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        class StubModel:
            def encode(self, text: str, convert_to_numpy: bool = True) -> list[float]:
                return [0.5, 0.25, 0.25]

        provider = SentenceTransformerProvider(
            EmbeddingConfig(model="local/all-MiniLM-L6-v2", dimensions=3)
        )
        monkeypatch.setattr(provider, "_load_model", lambda: StubModel())

        await provider.load()

        assert provider.model_name == "all-MiniLM-L6-v2"
        assert await provider.embed_query("text") == [0.5, 0.25, 0.25]


class TestCreateEmbeddingProvider:
    """Tests for the provider factory."""

    def test_create_openai_provider(self) -> None:
        config = EmbeddingConfig(model="openai/text-embedding-3-small", api_key="test")
        provider = create_embedding_provider(config)

        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.model_name == "text-embedding-3-small"

    def test_create_local_provider(self) -> None:
        config = EmbeddingConfig(model="local/all-MiniLM-L6-v2")
        assert isinstance(create_embedding_provider(config), SentenceTransformerProvider)

    def test_unknown_model_prefix_raises(self) -> None:
        config = EmbeddingConfig(model="unknown/model")

        with pytest.raises(ValueError, match="Unknown model prefix"):
            create_embedding_provider(config)
