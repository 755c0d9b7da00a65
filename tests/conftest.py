"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests get a deterministic, offline embedding provider
"""

from __future__ import annotations

import asyncio
import re
import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from entity_search.embedding import EmbeddingClient  # noqa: E402
from entity_search.store import InMemoryVectorStore  # noqa: E402

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class FakeEmbeddingProvider:
    """Bag-of-words provider: one dimension per distinct lowercase token.

    Token-to-dimension assignments are first come, first served, so two texts
    share a non-zero similarity only if they share a token.
    """

    def __init__(self, dimensions: int = 128):
        self.dimensions = dimensions
        self.vocabulary: dict[str, int] = {}
        self.load_calls = 0
        self.embed_calls: list[str] = []
        self.fail_load = False
        self.fail_on: set[str] = set()
        self.overrides: dict[str, list[float]] = {}

    async def load(self) -> None:
        self.load_calls += 1
        # Yield so concurrent callers overlap with the load in progress
        await asyncio.sleep(0)
        if self.fail_load:
            raise RuntimeError("model download failed")

    async def embed_query(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError(f"provider rejected input {text[:20]!r}")
        if text in self.overrides:
            return list(self.overrides[text])

        vector = [0.0] * self.dimensions
        for token in TOKEN_PATTERN.findall(text.lower()):
            if token not in self.vocabulary:
                self.vocabulary[token] = len(self.vocabulary) % self.dimensions
            vector[self.vocabulary[token]] += 1.0
        return vector


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_client(fake_provider: FakeEmbeddingProvider) -> EmbeddingClient:
    """Client around the fake provider; tests await client.load() themselves."""
    return EmbeddingClient(fake_provider)


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    """Uninitialized in-memory store."""
    return InMemoryVectorStore()
