"""
Semantic Cache Similarity Engine

Pure numeric helpers: cosine similarity between two vectors and a
vectorized linear scan of cache entries against a query vector.

Scores are clamped to [0, 1]; anti-correlated vectors are never useful
matches for a cache, so they score the same as orthogonal ones.
"""

from collections.abc import Iterable, Sequence

import numpy as np

from ..errors import DimensionMismatchError
from .models import CacheEntry, CandidateMatch


def cosine_similarity(vec1: Sequence[float] | np.ndarray, vec2: Sequence[float] | np.ndarray) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity score (0-1, higher = more similar); 0.0 if either
        vector has zero magnitude

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    v1 = np.asarray(vec1, dtype=np.float64)
    v2 = np.asarray(vec2, dtype=np.float64)

    if v1.shape != v2.shape:
        raise DimensionMismatchError(expected=v1.shape[0], actual=v2.shape[0])

    v1_norm = np.linalg.norm(v1)
    v2_norm = np.linalg.norm(v2)

    if v1_norm == 0 or v2_norm == 0:
        return 0.0

    similarity = float(np.dot(v1, v2) / (v1_norm * v2_norm))
    return max(0.0, min(1.0, similarity))


class SimilarityEngine:
    """Scores cache entries against a query embedding."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension

    def cosine_similarity(self, vec1: Sequence[float] | np.ndarray, vec2: Sequence[float] | np.ndarray) -> float:
        return cosine_similarity(vec1, vec2)

    def score(self, query_vec: Sequence[float] | np.ndarray, entries: Sequence[CacheEntry]) -> np.ndarray:
        """
        Similarity of every entry to the query, in entry order.

        Raises:
            DimensionMismatchError: If the query or any entry has the wrong length
        """
        query = np.asarray(query_vec, dtype=np.float32)
        if query.shape[0] != self.dimension:
            raise DimensionMismatchError(expected=self.dimension, actual=query.shape[0])
        if not entries:
            return np.zeros(0, dtype=np.float64)

        for entry in entries:
            if entry.dimension != self.dimension:
                raise DimensionMismatchError(
                    expected=self.dimension,
                    actual=entry.dimension,
                    details={"entry_id": entry.id},
                )

        matrix = np.stack([entry.embedding for entry in entries])
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return np.zeros(len(entries), dtype=np.float64)

        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, dots / (norms * query_norm), 0.0)
        return np.clip(scores.astype(np.float64), 0.0, 1.0)

    def find_most_similar(
        self,
        query_vec: Sequence[float] | np.ndarray,
        candidates: Iterable[CacheEntry],
        top_k: int | None = None,
        min_threshold: float = 0.0,
    ) -> list[CandidateMatch]:
        """
        Linear scan returning the best matches above a threshold.

        Args:
            query_vec: Query embedding
            candidates: Entries to compare against
            top_k: Maximum matches to return (None = all)
            min_threshold: Minimum similarity to keep

        Returns:
            CandidateMatch list sorted by similarity desc, then entry id asc
        """
        entries = list(candidates)
        scores = self.score(query_vec, entries)

        matches = [
            CandidateMatch(entry=entry, similarity_score=float(score))
            for entry, score in zip(entries, scores, strict=True)
            if score >= min_threshold
        ]
        matches.sort(key=lambda m: (-m.similarity_score, m.entry.id))

        if top_k is not None:
            return matches[:top_k]
        return matches

    def similarity_matrix(self, vectors: Sequence[Sequence[float]] | np.ndarray) -> list[list[float]]:
        """Pairwise clamped cosine similarities; the diagonal is 1.0 for non-zero vectors."""
        matrix = np.asarray(vectors, dtype=np.float64)
        if matrix.size == 0:
            return []
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise DimensionMismatchError(
                expected=self.dimension,
                actual=int(matrix.shape[-1]) if matrix.ndim else 0,
            )

        norms = np.linalg.norm(matrix, axis=1)
        safe = np.where(norms > 0, norms, 1.0)
        unit = matrix / safe[:, None]
        result = np.clip(unit @ unit.T, 0.0, 1.0)
        zero = norms == 0
        result[zero, :] = 0.0
        result[:, zero] = 0.0
        return result.tolist()
