"""Embedding client abstraction for model-agnostic vector generation.

Providers wrap a concrete model (OpenAI API, local sentence-transformers).
EmbeddingClient adds the readiness lifecycle on top of a provider: a single
memoized load() shared by every early caller, and fail-fast embed() calls
until the model is ready.
"""

import asyncio
from typing import Any, Protocol

import httpx
from loguru import logger
from openai import APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field

from entity_search.exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    ModelLoadError,
)


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "openai/text-embedding-3-small", "local/all-MiniLM-L6-v2")
        version: Version tag recorded alongside persisted vectors
        dimensions: Expected embedding dimensionality (None to accept the model's own)
        max_retries: Maximum retry attempts for transient failures
        timeout_seconds: API request timeout
        api_key: API key for external services (set via env var)
        probe_text: Text embedded once by load() to warm the model up
    """

    model: str
    version: str = "v1"
    dimensions: int | None = Field(default=None, ge=1, le=4096)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    api_key: str | None = None
    probe_text: str = Field(default="test", min_length=1)


class EmbeddingProvider(Protocol):
    """Protocol for embedding provider implementations."""

    async def load(self) -> None:
        """Prepare the model for use (download, load weights, verify credentials)."""
        ...

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding for a single non-empty text.

        Args:
            text: Input text

        Returns:
            Embedding vector
        """
        ...


class OpenAIEmbeddingProvider:
    """OpenAI embedding provider with retry logic."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        self.config = config
        # Retries are handled below so backoff and logging stay in one place
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_name = config.model.removeprefix("openai/")

    async def load(self) -> None:
        """Verify credentials and model availability with a probe embedding."""
        await self.embed_query(self.config.probe_text)

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding with retry logic.

        Raises:
            ValueError: If the returned vector has the wrong dimensionality
            httpx.HTTPError: For API failures after all retries
        """
        for attempt in range(self.config.max_retries):
            try:
                kwargs: dict[str, Any] = {"model": self.model_name, "input": [text]}
                if self.config.dimensions is not None:
                    kwargs["dimensions"] = self.config.dimensions
                response = await self.client.embeddings.create(**kwargs)
                embedding = list(response.data[0].embedding)

                if self.config.dimensions is not None and len(embedding) != self.config.dimensions:
                    raise ValueError(
                        f"Expected {self.config.dimensions} dimensions, got {len(embedding)}"
                    )

                logger.debug(
                    f"Embedded {len(text)} chars with {self.model_name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return embedding

            except (httpx.TimeoutException, APITimeoutError) as e:
                logger.warning(
                    f"Timeout embedding text "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)  # Exponential backoff
                else:
                    raise

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))  # Longer backoff
                else:
                    raise

        raise RuntimeError("Exhausted all retry attempts")


class SentenceTransformerProvider:
    """Local embedding provider backed by sentence-transformers.

    The model is loaded lazily by load(); encoding runs in a worker thread so the
    event loop is never blocked by inference.
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.model_name = config.model.removeprefix("local/")
        self.model: Any = None

    async def load(self) -> None:
        if self.model is not None:
            return
        self.model = await asyncio.to_thread(self._load_model)
        await self.embed_query(self.config.probe_text)

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading sentence-transformers model {self.model_name}")
        return SentenceTransformer(self.model_name)

    async def embed_query(self, text: str) -> list[float]:
        if self.model is None:
            raise RuntimeError(f"Model {self.model_name} is not loaded")
        embedding = await asyncio.to_thread(self.model.encode, text, convert_to_numpy=True)
        vector = [float(value) for value in embedding]
        if self.config.dimensions is not None and len(vector) != self.config.dimensions:
            raise ValueError(f"Expected {self.config.dimensions} dimensions, got {len(vector)}")
        return vector


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Factory function to create an embedding provider based on model config.

    Example:
        >>> config = EmbeddingConfig(model="local/all-MiniLM-L6-v2", dimensions=384)
        >>> provider = create_embedding_provider(config)
    """
    if config.model.startswith("openai/"):
        return OpenAIEmbeddingProvider(config)
    elif config.model.startswith("local/"):
        return SentenceTransformerProvider(config)
    else:
        raise ValueError(
            f"Unknown model prefix in {config.model!r}. " f"Expected 'openai/' or 'local/'"
        )


class EmbeddingClient:
    """Readiness-gated wrapper around an embedding provider.

    load() is memoized per instance: concurrent callers before readiness await
    the same in-flight load instead of triggering duplicate model loads. A
    failed load is not cached, so a later load() retries.
    """

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider
        self._ready = False
        self._load_task: asyncio.Task[None] | None = None
        self._dimensions: int | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def dimensions(self) -> int | None:
        """Dimensionality fixed by the first vector produced, None before that."""
        return self._dimensions

    async def load(self) -> None:
        """Load the underlying model once.

        Raises:
            ModelLoadError: If the provider fails to initialize
        """
        if self._ready:
            return
        if self._load_task is None:
            self._load_task = asyncio.create_task(self._load())
        task = self._load_task
        try:
            # Shielded so one cancelled waiter does not abort the shared load
            await asyncio.shield(task)
        except ModelLoadError:
            if self._load_task is task:
                self._load_task = None
            raise

    async def _load(self) -> None:
        logger.info("Loading embedding model")
        try:
            await self.provider.load()
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise ModelLoadError(f"Embedding model failed to load: {e}") from e
        self._ready = True
        logger.info("Embedding model loaded successfully")

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: If the model is not loaded, the text is blank,
                or the provider fails
        """
        if not self._ready:
            raise EmbeddingError("Embedding model not loaded. Call load() first.")
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            vector = await self.provider.embed_query(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}", {"text_length": len(text)}) from e

        if not vector:
            raise EmbeddingError("Provider returned an empty vector", {"text_length": len(text)})
        if self._dimensions is None:
            self._dimensions = len(vector)
        elif len(vector) != self._dimensions:
            raise EmbeddingError(
                "Provider changed embedding dimensionality",
                {"text_length": len(text)},
            ) from DimensionMismatchError(self._dimensions, len(vector))
        return vector
