"""
Tests for similarity scoring: vector, structured, hybrid and recency.
"""

from datetime import timedelta

import pytest

from orbcast.core.config import RAGConfig
from orbcast.core.embeddings import fallback_embedding
from orbcast.core.models import utcnow
from orbcast.services.rag.similarity import (
    MIN_RECENCY_WEIGHT,
    compute_hybrid_similarity,
    compute_major_trait_overlap,
    compute_recency_weight,
    compute_structured_similarity,
    compute_vector_similarity,
    score_neighbor,
    score_neighbors,
)


class TestVectorSimilarity:
    def test_self_similarity_is_one(self):
        vec = fallback_embedding("platform=tiktok\nhook=curiosity")
        assert compute_vector_similarity(vec, vec) == pytest.approx(1.0)

    def test_range_is_zero_to_one(self):
        texts = ["platform=tiktok", "hook=question", "ugc=true\nsubtitles=false", "music=upbeat"]
        vectors = [fallback_embedding(t) for t in texts]
        for a in vectors:
            for b in vectors:
                assert 0.0 <= compute_vector_similarity(a, b) <= 1.0

    def test_opposite_and_orthogonal(self):
        assert compute_vector_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)
        assert compute_vector_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)

    def test_missing_or_mismatched_vectors(self):
        assert compute_vector_similarity(None, [1.0]) == 0.0
        assert compute_vector_similarity([], [1.0]) == 0.0
        assert compute_vector_similarity([1.0, 0.0], [1.0]) == 0.0
        assert compute_vector_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


class TestStructuredSimilarity:
    def test_identical_traits(self, make_orb):
        a = make_orb("a", traits={"hook": "curiosity", "ugc": True})
        b = make_orb("b", traits={"hook": "curiosity", "ugc": True})
        assert compute_structured_similarity(a, b) == pytest.approx(1.0)

    def test_weighted_partial_match(self, make_orb):
        # platform (2.0) matches, hook (1.5) differs
        a = make_orb("a", traits={"hook": "curiosity"})
        b = make_orb("b", traits={"hook": "question"})
        assert compute_structured_similarity(a, b) == pytest.approx(2.0 / 3.5)

    def test_substring_earns_half(self, make_orb):
        a = make_orb("a", traits={"hook": "curiosity"})
        b = make_orb("b", traits={"hook": "curiosity_gap"})
        assert compute_structured_similarity(a, b) == pytest.approx((2.0 + 0.75) / 3.5)

    def test_missing_key_counts_in_total(self, make_orb):
        a = make_orb("a", traits={"subtitles": True})
        b = make_orb("b")
        # platform 2.0 matched out of 2.0 + 1.0
        assert compute_structured_similarity(a, b) == pytest.approx(2.0 / 3.0)

    def test_bool_never_matches_number(self, make_orb):
        a = make_orb("a", traits={"actors": True}, platform=None)
        b = make_orb("b", traits={"actors": 1}, platform=None)
        assert compute_structured_similarity(a, b) == 0.0

    def test_no_traits(self, make_orb):
        a = make_orb("a", platform=None)
        b = make_orb("b", platform=None)
        assert compute_structured_similarity(a, b) == 0.0

    def test_major_trait_overlap(self, make_orb):
        a = make_orb("a", traits={"hook": "curiosity", "ugc": True})
        b = make_orb("b", traits={"hook": "question", "ugc": True})
        # platform and ugc match; hook differs
        assert compute_major_trait_overlap(a, b) == pytest.approx(2 / 3)


class TestHybridAndRecency:
    def test_hybrid_weights(self, make_orb):
        vec = fallback_embedding("platform=tiktok")
        a = make_orb("a", traits={"hook": "curiosity"}, embedding=vec)
        b = make_orb("b", traits={"hook": "question"}, embedding=vec)
        expected = 0.6 * 1.0 + 0.4 * (2.0 / 3.5)
        assert compute_hybrid_similarity(a, b) == pytest.approx(expected)

    def test_recency_half_life(self):
        now = utcnow()
        assert compute_recency_weight(now, now=now) == 1.0
        assert compute_recency_weight(now - timedelta(days=30), now=now) == pytest.approx(0.5)
        assert compute_recency_weight(now - timedelta(days=60), now=now) == pytest.approx(0.25)

    def test_recency_floor(self):
        now = utcnow()
        assert compute_recency_weight(now - timedelta(days=365), now=now) == MIN_RECENCY_WEIGHT

    def test_future_dates_are_fresh(self):
        now = utcnow()
        assert compute_recency_weight(now + timedelta(days=3), now=now) == 1.0

    def test_naive_dates_are_read_as_utc(self):
        now = utcnow()
        naive = (now - timedelta(days=30)).replace(tzinfo=None)
        assert compute_recency_weight(naive, now=now) == pytest.approx(0.5)
        assert compute_recency_weight(now - timedelta(days=30), now=now.replace(tzinfo=None)) == pytest.approx(0.5)


class TestScoreNeighbors:
    def test_score_neighbor_fields(self, make_orb):
        vec = fallback_embedding("platform=tiktok")
        query = make_orb("q", embedding=vec)
        candidate = make_orb("c", 70, embedding=vec, age_days=30)
        neighbor = score_neighbor(query, candidate)
        assert neighbor.hybrid_similarity == pytest.approx(1.0)
        assert neighbor.recency_weight == pytest.approx(0.5, abs=0.01)
        assert neighbor.weighted_similarity == pytest.approx(
            neighbor.hybrid_similarity * neighbor.recency_weight
        )

    def test_excludes_self_and_weak_matches_and_sorts(self, make_orb):
        vec = fallback_embedding("platform=tiktok")
        query = make_orb("q", embedding=vec)
        candidates = [
            make_orb("q", 90, embedding=vec),
            make_orb("old", 70, embedding=vec, age_days=60),
            make_orb("fresh", 60, embedding=vec),
            make_orb("far", 50, traits={"hook": "x"}, platform="youtube", embedding=[-v for v in vec]),
        ]
        neighbors = score_neighbors(query, candidates, RAGConfig())
        assert [n.orb.id for n in neighbors] == ["fresh", "old"]
