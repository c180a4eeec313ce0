"""
RAG Predictor - retrieval-augmented score for a single ad.

Flow:
1. Convert the AdEntry to an AdOrb, embed it and save it to the store
2. Retrieve similar ads that have results
3. Contrastive analysis of the query's traits (when enabled)
4. Neighbor prediction and blend alpha
5. Choose rag / hybrid / legacy from alpha
6. Explanation, plus marketplace hints when data gaps warrant them

Callers should go through SafePredictor, which adds the timeout, score
validation and fallback guarantees.
"""

import logging
from typing import Any, Dict, List, Optional

from orbcast.core.config import EngineConfig
from orbcast.core.models import (
    AdEntry,
    AdOrb,
    ContrastiveAnalysis,
    Explanation,
    FallbackReason,
    LegacyPrediction,
    MarketplaceInsights,
    NeighborAd,
    PredictionMethod,
    RAGPredictionResult,
)
from orbcast.core.store import OrbStore

from .ad_orb import convert_to_ad_orb
from .contrastive import SCOPE_QUERY, perform_contrastive_analysis
from .data_needs import analyze_gaps, should_show_marketplace_suggestions
from .embedding_service import EmbeddingService
from .explanation import generate_explanation, generate_simple_explanation
from .legacy import LegacyPredictor, TraitHeuristicPredictor
from .marketplace import generate_suggestions, match_data_needs
from .neighbor_prediction import calculate_blend_alpha, compute_neighbor_prediction
from .retrieval import RetrievalService, get_neighbor_stats, has_enough_neighbors
from .safety import clamp_score, is_variance_too_high, safe_execute

logger = logging.getLogger(__name__)

# Blend alpha at or above which the retrieval score is used alone
RAG_ALPHA_THRESHOLD = 0.9

# Blend alpha at or above which retrieval and legacy scores are blended
HYBRID_ALPHA_THRESHOLD = 0.3

MAX_MARKETPLACE_NEEDS = 5
MAX_MARKETPLACE_SUGGESTIONS = 3
MAX_RETURNED_NEIGHBORS = 5


class RAGPredictor:
    """
    Retrieval-augmented predictor.

    Args:
        store: Orb store holding historical ads (the query is saved into it)
        embedding_service: Embedding service (defaults to fallback-only)
        legacy_predictor: Non-retrieval predictor used for blending
        config: Engine configuration
    """

    def __init__(
        self,
        store: OrbStore,
        embedding_service: Optional[EmbeddingService] = None,
        legacy_predictor: Optional[LegacyPredictor] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.embedding_service = embedding_service or EmbeddingService(safety_config=self.config.safety)
        self.legacy_predictor = legacy_predictor or TraitHeuristicPredictor()
        self.retrieval = RetrievalService(
            store,
            self.embedding_service,
            rag_config=self.config.rag,
            safety_config=self.config.safety,
        )

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def _prepare_query(self, ad: AdEntry, save: bool = True) -> AdOrb:
        orb = convert_to_ad_orb(ad)
        orb = await self.embedding_service.generate_orb_embedding(orb)
        if save:
            self.store.save(orb)
        return orb

    async def _legacy_prediction(self, ad: AdEntry) -> LegacyPrediction:
        """Legacy prediction; its own failures become the neutral default."""
        neutral = LegacyPrediction(
            score=self.config.safety.default_fallback_score,
            confidence=self.config.safety.default_fallback_confidence,
        )
        return await safe_execute(lambda: self.legacy_predictor.predict(ad), neutral)

    def _analyze(self, query: AdOrb, neighbors: List[NeighborAd]) -> ContrastiveAnalysis:
        if not self.config.flags.enable_contrastive:
            stats = get_neighbor_stats(neighbors)
            return ContrastiveAnalysis(total_neighbors=len(neighbors), avg_similarity=stats.avg_similarity)
        return perform_contrastive_analysis(
            query, neighbors, self.config.rag, self.config.safety, scope=SCOPE_QUERY
        )

    def _marketplace_insights(
        self, query: AdOrb, neighbors: List[NeighborAd], analysis: ContrastiveAnalysis, confidence: float
    ) -> Optional[MarketplaceInsights]:
        """Top needs and dataset suggestions, only when the gaps are significant."""
        mp_config = self.config.marketplace
        if not (self.config.flags.enable_marketplace_hints and mp_config.enabled):
            return None

        avg_similarity = get_neighbor_stats(neighbors).avg_similarity * 100
        if not should_show_marketplace_suggestions(len(neighbors), confidence, avg_similarity, mp_config):
            return None

        gap_analysis = analyze_gaps(
            neighbors,
            analysis.trait_effects,
            query.metadata.platform,
            confidence,
            self.config.rag,
            mp_config,
        )
        if not gap_analysis.has_significant_gaps:
            return None

        matches = match_data_needs(gap_analysis.needs, mp_config)
        suggestions = generate_suggestions(matches, confidence)
        return MarketplaceInsights(
            data_needs=gap_analysis.needs[:MAX_MARKETPLACE_NEEDS],
            suggestions=suggestions[:MAX_MARKETPLACE_SUGGESTIONS],
            gap_analysis=gap_analysis,
        )

    def _insufficient_reason(self, neighbors: List[NeighborAd]) -> FallbackReason:
        if len(neighbors) < self.config.rag.min_neighbors:
            return FallbackReason.INSUFFICIENT_NEIGHBORS
        return FallbackReason.LOW_SIMILARITY

    # =========================================================================
    # Prediction
    # =========================================================================

    async def predict(self, ad: AdEntry) -> RAGPredictionResult:
        """
        Full prediction with legacy blending.

        Args:
            ad: Ad to score

        Returns:
            RAGPredictionResult. With too few (or too dissimilar) neighbors
            the method is ``legacy`` and ``fallback_reason`` says why.
        """
        query = await self._prepare_query(ad)
        neighbors = await self.retrieval.retrieve_similar_ads_with_results(query, self.config.rag.default_k)

        if not has_enough_neighbors(neighbors, self.config.rag):
            legacy = await self._legacy_prediction(ad)
            reason = self._insufficient_reason(neighbors)
            logger.info(
                f"RAG fallback for {ad.id}: {reason.value} "
                f"({len(neighbors)} neighbors, minimum {self.config.rag.min_neighbors})"
            )
            return RAGPredictionResult(
                predicted_score=clamp_score(legacy.score, self.config.safety),
                confidence=clamp_score(legacy.confidence, self.config.safety),
                method=PredictionMethod.LEGACY,
                legacy_score=legacy.score,
                neighbor_count=len(neighbors),
                neighbor_ids=[n.orb.id for n in neighbors[:MAX_RETURNED_NEIGHBORS]],
                explanation=Explanation(
                    summary=(
                        f"Prediction based on the fallback model. Only {len(neighbors)} similar ads "
                        f"found (minimum: {self.config.rag.min_neighbors})."
                    ),
                    confidence_explanation="Not enough similar ads for a retrieval-based prediction.",
                    recommendations=["Add more ads with results to improve predictions."],
                ),
                fallback_reason=reason,
            )

        analysis = self._analyze(query, neighbors)
        neighbor_prediction = compute_neighbor_prediction(neighbors, self.config.rag)
        alpha = calculate_blend_alpha(neighbors, self.config.rag)
        legacy = await self._legacy_prediction(ad)

        fallback_reason = None
        if is_variance_too_high(neighbor_prediction.variance, self.config.safety):
            method = PredictionMethod.LEGACY
            final_score = legacy.score
            fallback_reason = FallbackReason.HIGH_VARIANCE
        elif alpha >= RAG_ALPHA_THRESHOLD:
            method = PredictionMethod.RAG
            final_score = neighbor_prediction.prediction
        elif alpha >= HYBRID_ALPHA_THRESHOLD and self.config.flags.enable_hybrid_blend:
            method = PredictionMethod.HYBRID
            final_score = alpha * neighbor_prediction.prediction + (1 - alpha) * legacy.score
        else:
            method = PredictionMethod.LEGACY
            final_score = legacy.score

        explanation = generate_explanation(
            final_score, neighbor_prediction.confidence, neighbors, analysis, query
        )
        marketplace = self._marketplace_insights(
            query, neighbors, analysis, neighbor_prediction.confidence
        )

        logger.info(
            f"Predicted {ad.id}: {final_score:.1f} via {method.value} "
            f"(alpha={alpha:.2f}, {len(neighbors)} neighbors)"
        )

        return RAGPredictionResult(
            predicted_score=clamp_score(round(final_score, 1), self.config.safety),
            confidence=clamp_score(neighbor_prediction.confidence, self.config.safety),
            method=method,
            legacy_score=legacy.score,
            rag_prediction=neighbor_prediction,
            blend_alpha=alpha,
            neighbor_count=len(neighbors),
            neighbor_ids=[n.orb.id for n in neighbors[:MAX_RETURNED_NEIGHBORS]],
            contrastive_analysis=analysis,
            explanation=explanation,
            marketplace=marketplace,
            fallback_reason=fallback_reason,
        )

    async def predict_rag_only(self, ad: AdEntry) -> RAGPredictionResult:
        """Neighbor prediction without legacy blending (50/0 when nothing is found).

        The neighbor estimate is returned even below the data gate; in that
        case ``fallback_reason`` records why it should not be trusted.
        """
        query = await self._prepare_query(ad)
        neighbors = await self.retrieval.retrieve_similar_ads_with_results(query, self.config.rag.default_k)

        if not neighbors:
            return RAGPredictionResult(
                predicted_score=self.config.safety.default_fallback_score,
                confidence=0.0,
                method=PredictionMethod.RAG,
                explanation=Explanation(summary="No similar ads found. Cannot make prediction."),
                fallback_reason=FallbackReason.INSUFFICIENT_NEIGHBORS,
            )

        fallback_reason = None
        if not has_enough_neighbors(neighbors, self.config.rag):
            fallback_reason = self._insufficient_reason(neighbors)
            logger.info(
                f"Neighbors-only prediction for {ad.id} below data gate: {fallback_reason.value} "
                f"({len(neighbors)} neighbors, minimum {self.config.rag.min_neighbors})"
            )

        analysis = self._analyze(query, neighbors)
        prediction = compute_neighbor_prediction(neighbors, self.config.rag)

        return RAGPredictionResult(
            predicted_score=prediction.prediction,
            confidence=prediction.confidence,
            method=PredictionMethod.RAG,
            rag_prediction=prediction,
            blend_alpha=1.0,
            neighbor_count=len(neighbors),
            neighbor_ids=[n.orb.id for n in neighbors[:MAX_RETURNED_NEIGHBORS]],
            contrastive_analysis=analysis,
            explanation=generate_explanation(
                prediction.prediction, prediction.confidence, neighbors, analysis, query
            ),
            fallback_reason=fallback_reason,
        )

    async def predict_batch(self, ads: List[AdEntry]) -> List[RAGPredictionResult]:
        """Sequential predictions; a failing ad yields a neutral legacy result."""
        results = []
        for ad in ads:
            try:
                results.append(await self.predict(ad))
            except Exception as e:
                logger.error(f"Batch prediction failed for {ad.id}: {e}")
                results.append(RAGPredictionResult(
                    predicted_score=self.config.safety.default_fallback_score,
                    confidence=self.config.safety.default_fallback_confidence,
                    method=PredictionMethod.LEGACY,
                    explanation=Explanation(summary="Prediction failed."),
                    fallback_reason=FallbackReason.ERROR,
                ))
        return results

    async def analyze_ad_traits(self, ad: AdEntry) -> Dict[str, Any]:
        """
        Trait effects for an ad without predicting. The ad is not saved.

        Returns:
            Dict with ``trait_effects``, ``neighbors`` (top 10) and ``explanation``
        """
        query = await self._prepare_query(ad, save=False)
        neighbors = await self.retrieval.retrieve_similar_ads_with_results(query, self.config.rag.default_k)

        if not neighbors:
            return {
                "trait_effects": [],
                "neighbors": [],
                "explanation": "No similar ads found for analysis.",
            }

        analysis = perform_contrastive_analysis(
            query, neighbors, self.config.rag, self.config.safety, scope=SCOPE_QUERY
        )
        return {
            "trait_effects": analysis.trait_effects,
            "neighbors": neighbors[:10],
            "explanation": generate_simple_explanation(neighbors, analysis),
        }
