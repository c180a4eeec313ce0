"""
Retrieval Service - top-k similar ads from the orb store.

Scores every candidate that survives the filters with hybrid similarity and
recency, then returns the best k. ``has_enough_neighbors`` is the single
data-sufficiency gate used by prediction, the pipeline and gap detection.
"""

import logging
from datetime import timedelta
from typing import List, Optional

import numpy as np

from orbcast.core.config import DEFAULT_RAG_CONFIG, DEFAULT_SAFETY_CONFIG, RAGConfig, SafetyConfig
from orbcast.core.models import AdOrb, NeighborAd, NeighborStats, RetrievalFilters, as_utc, utcnow
from orbcast.core.store import OrbStore, orb_has_results

from .embedding_service import EmbeddingService
from .safety import has_enough_data_for_rag
from .similarity import score_neighbors

logger = logging.getLogger(__name__)


def apply_filters(orbs: List[AdOrb], filters: Optional[RetrievalFilters]) -> List[AdOrb]:
    """Keep only orbs that satisfy every set filter."""
    if filters is None:
        return orbs

    filtered = orbs
    if filters.platform:
        filtered = [o for o in filtered if o.metadata.platform == filters.platform]
    if filters.objective:
        filtered = [o for o in filtered if o.metadata.objective == filters.objective]
    if filters.max_age_days:
        cutoff = utcnow() - timedelta(days=filters.max_age_days)
        filtered = [o for o in filtered if as_utc(o.metadata.created_at) >= cutoff]
    if filters.min_success_score is not None:
        filtered = [
            o for o in filtered
            if o.results is not None
            and o.results.success_score is not None
            and o.results.success_score >= filters.min_success_score
        ]
    if filters.require_results:
        filtered = [o for o in filtered if orb_has_results(o)]
    return filtered


class RetrievalService:
    """Finds the historical ads most similar to a query ad."""

    def __init__(
        self,
        store: OrbStore,
        embedding_service: Optional[EmbeddingService] = None,
        rag_config: RAGConfig = DEFAULT_RAG_CONFIG,
        safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
    ):
        self.store = store
        self.embedding_service = embedding_service or EmbeddingService(safety_config=safety_config)
        self.rag_config = rag_config
        self.safety_config = safety_config

    async def retrieve_similar_ads(
        self,
        query: AdOrb,
        k: Optional[int] = None,
        filters: Optional[RetrievalFilters] = None,
    ) -> List[NeighborAd]:
        """
        Retrieve the top-k neighbors of a query ad.

        Args:
            query: Ad to find neighbors for (embedded on the fly if needed)
            k: Number of neighbors (default rag_config.default_k, capped at
                safety_config.max_neighbors_to_retrieve)
            filters: Optional platform / objective / age / score filters

        Returns:
            Neighbors sorted by weighted similarity, best first
        """
        k = k if k is not None else self.rag_config.default_k
        k = max(0, min(k, self.safety_config.max_neighbors_to_retrieve))

        if not query.embedding:
            query = await self.embedding_service.generate_orb_embedding(query)

        if filters is not None and filters.require_results:
            candidates = self.store.list_with_results()
        else:
            candidates = self.store.list()

        candidates = apply_filters(candidates, filters)
        neighbors = score_neighbors(query, candidates, self.rag_config)

        logger.debug(
            f"Retrieved {min(k, len(neighbors))}/{len(neighbors)} neighbors "
            f"for {query.id} from {len(candidates)} candidates"
        )
        return neighbors[:k]

    async def retrieve_similar_ads_with_results(
        self,
        query: AdOrb,
        k: Optional[int] = None,
        filters: Optional[RetrievalFilters] = None,
    ) -> List[NeighborAd]:
        """Neighbors restricted to ads with a success score. Used for prediction."""
        filters = (filters or RetrievalFilters()).model_copy(update={"require_results": True})
        return await self.retrieve_similar_ads(query, k, filters)

    async def retrieve_similar_ads_for_platform(
        self, query: AdOrb, k: Optional[int] = None
    ) -> List[NeighborAd]:
        filters = RetrievalFilters(platform=query.metadata.platform, require_results=True)
        return await self.retrieve_similar_ads(query, k, filters)


# =============================================================================
# Statistics
# =============================================================================

def get_neighbor_stats(neighbors: List[NeighborAd]) -> NeighborStats:
    """Similarity and outcome statistics over a neighbor list."""
    if not neighbors:
        return NeighborStats()

    similarities = np.array([n.hybrid_similarity for n in neighbors], dtype=float)
    scores = np.array(
        [
            n.orb.results.success_score for n in neighbors
            if n.orb.results is not None and n.orb.results.success_score is not None
        ],
        dtype=float,
    )

    avg_success = float(scores.mean()) if scores.size else 0.0
    std_dev = float(scores.std(ddof=1)) if scores.size > 1 else 0.0

    return NeighborStats(
        count=len(neighbors),
        avg_similarity=float(similarities.mean()),
        avg_vector_similarity=float(np.mean([n.vector_similarity for n in neighbors])),
        avg_structured_similarity=float(np.mean([n.structured_similarity for n in neighbors])),
        avg_recency_weight=float(np.mean([n.recency_weight for n in neighbors])),
        avg_success_score=avg_success,
        success_std_dev=std_dev,
        min_similarity=float(similarities.min()),
        max_similarity=float(similarities.max()),
    )


def has_enough_neighbors(neighbors: List[NeighborAd], config: RAGConfig = DEFAULT_RAG_CONFIG) -> bool:
    """True when there are at least min_neighbors with average similarity >= min_similarity."""
    if len(neighbors) < config.min_neighbors:
        return False
    return has_enough_data_for_rag(len(neighbors), get_neighbor_stats(neighbors).avg_similarity, config)
