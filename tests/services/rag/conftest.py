"""Shared builders for the RAG service tests."""

from datetime import timedelta
from typing import Dict, Optional

import pytest

from orbcast.core.models import AdEntry, AdOrb, AdOrbMetadata, AdResults, NeighborAd, TraitValue, utcnow
from orbcast.core.store import InMemoryOrbStore
from orbcast.services.rag.ad_orb import convert_to_ad_orb
from orbcast.services.rag.embedding_service import EmbeddingService

UNIT_VECTOR = [1.0, 0.0]

# Creative attributes shared by the query ad and its look-alike history
QUERY_CONTENT = {"hookType": "curiosity", "isUGCStyle": True}


def _make_orb(
    orb_id: str,
    score: Optional[float] = None,
    traits: Optional[Dict[str, TraitValue]] = None,
    platform: Optional[str] = "tiktok",
    embedding=None,
    age_days: float = 0,
) -> AdOrb:
    traits = dict(traits or {})
    if platform and "platform" not in traits:
        traits["platform"] = platform
    created_at = utcnow() - timedelta(days=age_days)
    return AdOrb(
        id=orb_id,
        traits=traits,
        results=AdResults(success_score=score) if score is not None else None,
        metadata=AdOrbMetadata(
            platform=platform,
            created_at=created_at,
            updated_at=created_at,
            has_results=score is not None,
        ),
        embedding=embedding,
    )


def _make_neighbor(
    orb_id: str,
    score: Optional[float],
    traits: Optional[Dict[str, TraitValue]] = None,
    similarity: float = 0.8,
    recency: float = 1.0,
    platform: Optional[str] = "tiktok",
) -> NeighborAd:
    return NeighborAd(
        orb=_make_orb(orb_id, score, traits, platform),
        vector_similarity=similarity,
        structured_similarity=similarity,
        hybrid_similarity=similarity,
        recency_weight=recency,
        weighted_similarity=similarity * recency,
    )


def _make_ad(ad_id: str, score: Optional[float] = None, created_at: Optional[str] = None, **content) -> AdEntry:
    content.setdefault("platform", "tiktok")
    record = {
        "id": ad_id,
        "extracted_content": content,
        "has_results": score is not None,
        "success_score": score,
    }
    if created_at is not None:
        record["created_at"] = created_at
        record["updated_at"] = created_at
    return AdEntry.model_validate(record)


@pytest.fixture
def make_orb():
    return _make_orb


@pytest.fixture
def make_neighbor():
    return _make_neighbor


@pytest.fixture
def make_ad():
    return _make_ad


@pytest.fixture
def subtitle_neighbors():
    """Ten neighbors: five with subtitles scoring 80, five without scoring 55."""
    with_subs = [_make_neighbor(f"with-{i}", 80, {"subtitles": True}) for i in range(5)]
    without_subs = [_make_neighbor(f"without-{i}", 55, {"subtitles": False}) for i in range(5)]
    return with_subs + without_subs


class ConstantEmbeddingProvider:
    """Maps every text to the same vector."""

    async def embed(self, text: str):
        return list(UNIT_VECTOR)


@pytest.fixture
def constant_embeddings():
    return EmbeddingService(provider=ConstantEmbeddingProvider())


@pytest.fixture
def history_store():
    """Builds a store from scored ads, each embedded with the constant vector."""
    def build(scores, created_at=None, **content):
        content = content or dict(QUERY_CONTENT)
        store = InMemoryOrbStore()
        for i, score in enumerate(scores):
            orb = convert_to_ad_orb(_make_ad(f"h{i}", score, created_at, **content))
            store.save(orb.model_copy(update={"embedding": list(UNIT_VECTOR)}))
        return store
    return build


@pytest.fixture
def query_ad():
    return _make_ad("q", **QUERY_CONTENT)
