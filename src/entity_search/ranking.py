"""Exact cosine-similarity ranking over stored chunks.

Ranking is a linear scan: every candidate is scored against the query vector.
The target corpora are small enough that no index structure is warranted.
"""

from collections.abc import Sequence

import numpy as np

from entity_search.exceptions import DimensionMismatchError
from entity_search.models import ChunkRecord, ScoredChunk


def _clamp(value: float) -> float:
    # Floating point drift can push |cos| slightly past 1.0
    return min(1.0, max(-1.0, value))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    v1 = np.asarray(a, dtype=np.float64)
    v2 = np.asarray(b, dtype=np.float64)
    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return _clamp(float(np.dot(v1 / norm1, v2 / norm2)))


def score_candidates(query: Sequence[float], candidates: Sequence[ChunkRecord]) -> np.ndarray:
    """Compute cosine similarity of every candidate against the query.

    Returns:
        Array of similarities aligned with ``candidates``
    """
    if not candidates:
        return np.zeros(0, dtype=np.float64)

    query_vec = np.asarray(query, dtype=np.float64)
    for record in candidates:
        if len(record.vector) != query_vec.shape[0]:
            raise DimensionMismatchError(
                query_vec.shape[0], len(record.vector), {"chunk_id": record.id}
            )

    query_norm = np.linalg.norm(query_vec)
    if query_norm == 0:
        return np.zeros(len(candidates), dtype=np.float64)

    matrix = np.asarray([record.vector for record in candidates], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    nonzero = norms > 0

    # Normalize before the dot product so tiny magnitudes cannot underflow the denominator
    scores = np.zeros(len(candidates), dtype=np.float64)
    unit_rows = matrix[nonzero] / norms[nonzero, np.newaxis]
    scores[nonzero] = unit_rows @ (query_vec / query_norm)
    return np.clip(scores, -1.0, 1.0)


def rank(
    query: Sequence[float],
    candidates: Sequence[ChunkRecord],
    limit: int | None = None,
) -> list[ScoredChunk]:
    """Rank candidates by cosine similarity to the query.

    Args:
        query: Query vector
        candidates: Stored chunks, in scan order
        limit: Maximum number of results; None returns every candidate

    Returns:
        Scored chunks by similarity descending; ties keep scan order

    Raises:
        ValueError: If limit is negative
        DimensionMismatchError: If a candidate's vector length differs from the query's
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")

    scores = score_candidates(query, candidates)
    order = np.argsort(-scores, kind="stable")
    if limit is not None:
        order = order[:limit]

    return [
        ScoredChunk(record=candidates[int(i)], similarity=float(scores[int(i)])) for i in order
    ]
