"""Exception hierarchy for the semantic search engine.

Every error raised by the engine derives from SemanticSearchError so callers can
catch the whole family in one place. Each exception carries a human-readable
message and an optional context mapping describing what was being processed
(which entity, which chunk, which query) so a caller can decide whether to retry.
"""

from typing import Any


class SemanticSearchError(Exception):
    """Base exception for all semantic search failures.

    Attributes:
        message: Human-readable error description
        context: Optional diagnostic details (entity, chunk index, query, ...)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ModelLoadError(SemanticSearchError):
    """The embedding provider failed to initialize.

    Fatal to all embed calls until a later load() succeeds.
    """


class EmbeddingError(SemanticSearchError):
    """A single embedding call failed or was issued before the model was ready."""


class NotReadyError(SemanticSearchError):
    """The vector store was used before initialize() completed."""


class DimensionMismatchError(SemanticSearchError, ValueError):
    """A vector's dimensionality differs from the one fixed for the store or client."""

    def __init__(self, expected: int, actual: int, context: dict[str, Any] | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} dimensions, got {actual}", context)


class IndexingError(SemanticSearchError):
    """Indexing an entity failed on one of its chunks."""

    def __init__(
        self,
        message: str,
        entity_type: str,
        entity_id: str,
        chunk_index: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.chunk_index = chunk_index
        super().__init__(
            message,
            {"entity_type": entity_type, "entity_id": entity_id, "chunk_index": chunk_index},
        )


class SearchError(SemanticSearchError):
    """Embedding a search query failed."""

    def __init__(self, message: str, query: str):
        self.query = query
        super().__init__(message, {"query": query})
