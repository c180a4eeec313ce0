"""
Tests for RetrievalService, filters and neighbor statistics.
"""

import math
from datetime import timedelta

import pytest

from orbcast.core.config import RAGConfig
from orbcast.core.models import RetrievalFilters, utcnow
from orbcast.core.store import InMemoryOrbStore
from orbcast.services.rag.ad_orb import convert_to_ad_orb
from orbcast.services.rag.embedding_service import EmbeddingService
from orbcast.services.rag.retrieval import (
    RetrievalService,
    apply_filters,
    get_neighbor_stats,
    has_enough_neighbors,
)

NEAR = [1.0, 0.0]
FAR = [-1.0, 0.0]
TRAITS = {"hook": "curiosity", "ugc": True}


@pytest.fixture
def store():
    return InMemoryOrbStore()


@pytest.fixture
def retrieval(store):
    return RetrievalService(store, EmbeddingService())


class TestRetrieveSimilarAds:
    @pytest.mark.asyncio
    async def test_identical_ads_are_perfect_matches(self, store, retrieval, make_orb):
        service = EmbeddingService()
        for i in range(3):
            store.save(await service.generate_orb_embedding(make_orb(f"h{i}", 70, TRAITS)))

        neighbors = await retrieval.retrieve_similar_ads(make_orb("q", traits=TRAITS))

        assert len(neighbors) == 3
        for n in neighbors:
            assert n.vector_similarity == pytest.approx(1.0)
            assert n.structured_similarity == pytest.approx(1.0)
            assert n.hybrid_similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_excludes_query_itself(self, store, retrieval, make_orb):
        query = make_orb("q", 50, TRAITS, embedding=NEAR)
        store.save(query)
        store.save(make_orb("other", 60, TRAITS, embedding=NEAR))

        neighbors = await retrieval.retrieve_similar_ads(query)
        assert [n.orb.id for n in neighbors] == ["other"]

    @pytest.mark.asyncio
    async def test_drops_weak_matches(self, store, retrieval, make_orb):
        store.save(make_orb("near", 60, TRAITS, embedding=NEAR))
        store.save(make_orb("far", 60, {"hook": "shock"}, platform="meta", embedding=FAR))

        neighbors = await retrieval.retrieve_similar_ads(make_orb("q", traits=TRAITS, embedding=NEAR))
        assert [n.orb.id for n in neighbors] == ["near"]

    @pytest.mark.asyncio
    async def test_sorted_by_recency_weighted_similarity(self, store, retrieval, make_orb):
        store.save(make_orb("old", 60, TRAITS, embedding=NEAR, age_days=60))
        store.save(make_orb("fresh", 60, TRAITS, embedding=NEAR))

        neighbors = await retrieval.retrieve_similar_ads(make_orb("q", traits=TRAITS, embedding=NEAR))
        assert [n.orb.id for n in neighbors] == ["fresh", "old"]
        assert neighbors[1].recency_weight == pytest.approx(0.25, abs=0.01)

    @pytest.mark.asyncio
    async def test_respects_k(self, store, retrieval, make_orb):
        for i in range(10):
            store.save(make_orb(f"h{i}", 60, TRAITS, embedding=NEAR))

        neighbors = await retrieval.retrieve_similar_ads(make_orb("q", traits=TRAITS, embedding=NEAR), k=3)
        assert len(neighbors) == 3

    @pytest.mark.asyncio
    async def test_with_results_skips_unscored(self, store, retrieval, make_orb):
        store.save(make_orb("scored", 60, TRAITS, embedding=NEAR))
        store.save(make_orb("unscored", None, TRAITS, embedding=NEAR))
        query = make_orb("q", traits=TRAITS, embedding=NEAR)

        all_neighbors = await retrieval.retrieve_similar_ads(query)
        scored = await retrieval.retrieve_similar_ads_with_results(query)

        assert {n.orb.id for n in all_neighbors} == {"scored", "unscored"}
        assert [n.orb.id for n in scored] == ["scored"]

    @pytest.mark.asyncio
    async def test_platform_retrieval(self, store, retrieval, make_orb):
        store.save(make_orb("tt", 60, TRAITS, embedding=NEAR))
        store.save(make_orb("fb", 60, TRAITS, platform="meta", embedding=NEAR))

        neighbors = await retrieval.retrieve_similar_ads_for_platform(
            make_orb("q", traits=TRAITS, embedding=NEAR)
        )
        assert [n.orb.id for n in neighbors] == ["tt"]


class TestApplyFilters:
    def test_no_filters(self, make_orb):
        orbs = [make_orb("a"), make_orb("b")]
        assert apply_filters(orbs, None) == orbs

    def test_min_success_score(self, make_orb):
        orbs = [make_orb("low", 30), make_orb("high", 80), make_orb("none")]
        kept = apply_filters(orbs, RetrievalFilters(min_success_score=50))
        assert [o.id for o in kept] == ["high"]

    def test_max_age(self, make_orb):
        orbs = [make_orb("new", age_days=1), make_orb("old", age_days=100)]
        kept = apply_filters(orbs, RetrievalFilters(max_age_days=30))
        assert [o.id for o in kept] == ["new"]

    def test_max_age_with_naive_timestamps(self, make_ad):
        recent = (utcnow() - timedelta(days=1)).replace(tzinfo=None).isoformat()
        orbs = [
            convert_to_ad_orb(make_ad("new", 60, created_at=recent)),
            convert_to_ad_orb(make_ad("old", 60, created_at="2020-01-01T00:00:00")),
        ]
        kept = apply_filters(orbs, RetrievalFilters(max_age_days=30))
        assert [o.id for o in kept] == ["new"]

    def test_platform_and_results(self, make_orb):
        orbs = [make_orb("a", 60), make_orb("b"), make_orb("c", 60, platform="meta")]
        kept = apply_filters(orbs, RetrievalFilters(platform="tiktok", require_results=True))
        assert [o.id for o in kept] == ["a"]


class TestNeighborStats:
    def test_empty(self):
        stats = get_neighbor_stats([])
        assert stats.count == 0
        assert stats.avg_similarity == 0.0

    def test_values(self, make_neighbor):
        neighbors = [
            make_neighbor("a", 60, similarity=0.6),
            make_neighbor("b", 80, similarity=1.0),
            make_neighbor("c", None, similarity=0.8),
        ]
        stats = get_neighbor_stats(neighbors)

        assert stats.count == 3
        assert stats.avg_similarity == pytest.approx(0.8)
        assert stats.avg_success_score == pytest.approx(70)
        assert stats.success_std_dev == pytest.approx(math.sqrt(200))
        assert stats.min_similarity == pytest.approx(0.6)
        assert stats.max_similarity == pytest.approx(1.0)


class TestHasEnoughNeighbors:
    def test_too_few(self, make_neighbor):
        neighbors = [make_neighbor(f"n{i}", 60) for i in range(3)]
        assert not has_enough_neighbors(neighbors)

    def test_enough(self, make_neighbor):
        neighbors = [make_neighbor(f"n{i}", 60) for i in range(5)]
        assert has_enough_neighbors(neighbors)

    def test_low_average_similarity(self, make_neighbor):
        neighbors = [make_neighbor(f"n{i}", 60, similarity=0.4) for i in range(5)]
        assert not has_enough_neighbors(neighbors)

    def test_custom_minimum(self, make_neighbor):
        neighbors = [make_neighbor(f"n{i}", 60) for i in range(3)]
        assert has_enough_neighbors(neighbors, RAGConfig(min_neighbors=3))
