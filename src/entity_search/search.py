"""Semantic search over indexed entities.

Chunks are ranked first and grouped second: every stored chunk is scored, then
chunks of the same entity collapse to their single best score. An entity is
exactly as relevant as its best-matching chunk.
"""

from loguru import logger

from entity_search.embedding import EmbeddingClient
from entity_search.exceptions import EmbeddingError, SearchError
from entity_search.models import ScoredChunk, SearchRequest, SearchResult
from entity_search.ranking import rank
from entity_search.store import VectorStore


def group_by_entity(scored: list[ScoredChunk]) -> list[SearchResult]:
    """Collapse scored chunks to one result per entity, keeping the max similarity.

    Results are ordered by similarity descending; ties keep first-seen order.
    """
    best: dict[tuple[str, str], SearchResult] = {}
    for item in scored:
        key = item.record.entity_key
        existing = best.get(key)
        if existing is None or item.similarity > existing.similarity:
            best[key] = SearchResult(
                entity_id=item.record.metadata.entity_id,
                entity_type=item.record.metadata.entity_type,
                similarity=item.similarity,
            )
    return sorted(best.values(), key=lambda result: result.similarity, reverse=True)


class SearchService:
    """Answers entity-level similarity queries."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: VectorStore,
        default_limit: int = 5,
        min_similarity: float | None = None,
    ):
        self.embedding_client = embedding_client
        self.store = store
        self.default_limit = default_limit
        self.min_similarity = min_similarity

    async def search(
        self,
        query: str,
        entity_type: str | None = None,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchResult]:
        """Search for entities by semantic similarity.

        Args:
            query: Natural language query; blank queries return no results
            entity_type: Only return entities of this type
            limit: Maximum number of entities (defaults to the service default)
            min_similarity: Drop entities scoring below this value

        Returns:
            Entity results by similarity descending, at most one per entity

        Raises:
            ValueError: If limit is less than 1
            SearchError: If embedding the query fails
        """
        limit = self.default_limit if limit is None else limit
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        threshold = self.min_similarity if min_similarity is None else min_similarity

        query = query.strip()
        if not query:
            return []

        try:
            query_vector = await self.embedding_client.embed(query)
        except EmbeddingError as e:
            raise SearchError(f"Failed to embed query: {e.message}", query=query) from e

        records = await self.store.scan()
        if entity_type is not None:
            records = [r for r in records if r.metadata.entity_type == entity_type]

        # Score every chunk before grouping: the top chunks need not be the top entities
        results = group_by_entity(rank(query_vector, records))
        if threshold is not None:
            results = [r for r in results if r.similarity >= threshold]
        results = results[:limit]

        logger.info(
            f"Semantic search for {query!r} returned {len(results)} results "
            f"({len(records)} chunks scanned)"
        )
        return results

    async def search_request(self, request: SearchRequest) -> list[SearchResult]:
        return await self.search(
            request.query,
            entity_type=request.entity_type,
            limit=request.limit,
            min_similarity=request.min_similarity,
        )
