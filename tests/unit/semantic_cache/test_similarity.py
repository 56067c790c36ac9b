"""
Similarity Engine Tests
"""

from datetime import timedelta

import pytest

from semcache.errors import DimensionMismatchError
from semcache.semantic_cache.models import CacheEntry
from semcache.semantic_cache.similarity import SimilarityEngine, cosine_similarity


def make_entry(query: str, embedding: list[float]) -> CacheEntry:
    return CacheEntry.create(query_text=query, embedding=embedding, payload=None, ttl=timedelta(hours=1))


class TestCosineSimilarity:
    """Test the scalar cosine helper."""

    def test_identical_vectors(self):
        """Test identical vectors score 1.0."""
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        """Test orthogonal vectors score 0.0."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors_clamped(self):
        """Test anti-correlated vectors are clamped to 0.0."""
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_zero_vector(self):
        """Test a zero-magnitude vector scores 0.0."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_symmetric(self):
        """Test sim(a, b) == sim(b, a)."""
        a, b = [0.3, 0.9, 0.1], [0.5, 0.2, 0.7]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_dimension_mismatch(self):
        """Test unequal lengths raise instead of truncating."""
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 0.0, 0.0], [1.0, 0.0])


class TestSimilarityEngine:
    """Test vectorized scans over cache entries."""

    def test_find_most_similar_orders_and_filters(self, vector_at):
        """Test matches are sorted by similarity and gated by min_threshold."""
        engine = SimilarityEngine(dimension=8)
        entries = [
            make_entry("low", vector_at(0.5)),
            make_entry("high", vector_at(0.95)),
            make_entry("mid", vector_at(0.8)),
        ]

        matches = engine.find_most_similar(vector_at(1.0), entries, min_threshold=0.7)

        assert [m.entry.query_text for m in matches] == ["high", "mid"]
        assert matches[0].similarity_score == pytest.approx(0.95, abs=1e-5)
        assert matches[1].similarity_score == pytest.approx(0.8, abs=1e-5)

    def test_top_k(self, vector_at):
        """Test top_k limits the result size."""
        engine = SimilarityEngine(dimension=8)
        entries = [make_entry(f"q{i}", vector_at(0.9 - i * 0.01)) for i in range(5)]

        matches = engine.find_most_similar(vector_at(1.0), entries, top_k=2)

        assert [m.entry.query_text for m in matches] == ["q0", "q1"]

    def test_ties_broken_by_id(self, vector_at):
        """Test equal similarity falls back to entry id order."""
        engine = SimilarityEngine(dimension=8)
        entries = [make_entry("a", vector_at(0.9)), make_entry("b", vector_at(0.9))]

        matches = engine.find_most_similar(vector_at(1.0), entries)

        assert [m.entry.id for m in matches] == sorted(e.id for e in entries)

    def test_empty_candidates(self, vector_at):
        """Test an empty scan returns nothing."""
        engine = SimilarityEngine(dimension=8)
        assert engine.find_most_similar(vector_at(1.0), []) == []

    def test_zero_query_vector_matches_nothing(self, vector_at):
        """Test a zero query vector scores every entry 0.0."""
        engine = SimilarityEngine(dimension=8)
        entries = [make_entry("a", vector_at(0.9))]

        matches = engine.find_most_similar([0.0] * 8, entries, min_threshold=0.01)

        assert matches == []

    def test_query_dimension_mismatch(self, vector_at):
        """Test a wrong-length query raises."""
        engine = SimilarityEngine(dimension=8)
        with pytest.raises(DimensionMismatchError):
            engine.find_most_similar([1.0, 0.0], [make_entry("a", vector_at(0.9))])

    def test_entry_dimension_mismatch(self, vector_at):
        """Test a stored entry of the wrong length raises."""
        engine = SimilarityEngine(dimension=8)
        with pytest.raises(DimensionMismatchError):
            engine.find_most_similar(vector_at(1.0), [make_entry("short", [1.0, 0.0, 0.0])])

    def test_similarity_matrix(self, axis):
        """Test pairwise similarities, including a zero row."""
        engine = SimilarityEngine(dimension=8)

        matrix = engine.similarity_matrix([axis(0), axis(0), axis(1), [0.0] * 8])

        assert matrix[0][0] == pytest.approx(1.0)
        assert matrix[0][1] == pytest.approx(1.0)
        assert matrix[0][2] == pytest.approx(0.0)
        assert matrix[3] == [0.0, 0.0, 0.0, 0.0]
        assert engine.similarity_matrix([]) == []
