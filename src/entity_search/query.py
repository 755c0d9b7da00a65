"""Stateful query entry point for interactive callers.

SemanticQuery tracks the latest query's pending flag, results and error. Every
submit() takes a new sequence number; a response is applied only if its
sequence number is still the latest issued, so a slow, stale query can never
overwrite the results of a newer one.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from loguru import logger

from entity_search.exceptions import SemanticSearchError
from entity_search.models import SearchResult
from entity_search.search import SearchService

StateListener = Callable[["QueryState"], None]


@dataclass(frozen=True)
class QueryState:
    """Snapshot of the façade's visible state.

    Attributes:
        query: Query text of the latest submission
        pending: True while the latest submission is in flight
        results: Results of the latest completed submission
        error: Error message of the latest failed submission
        sequence: Sequence number of the latest submission
    """

    query: str = ""
    pending: bool = False
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None
    sequence: int = 0


class SemanticQuery:
    """Debounced, supersession-aware wrapper around SearchService."""

    def __init__(self, search_service: SearchService, debounce_seconds: float = 0.0):
        if debounce_seconds < 0:
            raise ValueError(f"debounce_seconds must be non-negative, got {debounce_seconds}")
        self.search_service = search_service
        self.debounce_seconds = debounce_seconds
        self._state = QueryState()
        self._latest = 0
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> QueryState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for state changes.

        Returns:
            A function that unregisters the callback
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: QueryState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _is_latest(self, sequence: int) -> bool:
        return sequence == self._latest

    async def submit(
        self, query: str, entity_type: str | None = None, limit: int | None = None
    ) -> QueryState:
        """Run a query and publish its outcome unless a newer query superseded it.

        Search errors are captured in the returned state rather than raised. If the
        submission is cancelled or fails unexpectedly while still the latest, the
        pending flag is cleared before the exception propagates.

        Returns:
            The visible state once this submission settles
        """
        self._latest += 1
        sequence = self._latest

        if not query.strip():
            self._set_state(QueryState(query=query, sequence=sequence))
            return self._state

        self._set_state(replace(self._state, query=query, pending=True, error=None, sequence=sequence))

        try:
            if self.debounce_seconds:
                await asyncio.sleep(self.debounce_seconds)
                if not self._is_latest(sequence):
                    logger.debug(f"Query #{sequence} superseded during debounce")
                    return self._state

            try:
                results = await self.search_service.search(
                    query, entity_type=entity_type, limit=limit
                )
            except (SemanticSearchError, ValueError) as e:
                if self._is_latest(sequence):
                    logger.error(f"Semantic search failed for {query!r}: {e}")
                    self._set_state(replace(self._state, pending=False, results=[], error=str(e)))
                return self._state

            if self._is_latest(sequence):
                self._set_state(replace(self._state, pending=False, results=results, error=None))
            else:
                logger.debug(f"Discarded stale results for query #{sequence}")
            return self._state
        finally:
            # Cancellation or an unexpected error must not leave the latest query pending
            if self._is_latest(sequence) and self._state.pending:
                self._set_state(replace(self._state, pending=False))

    def reset(self) -> None:
        """Clear visible state and invalidate any in-flight submission."""
        self._latest += 1
        self._set_state(QueryState(sequence=self._latest))
