"""
Unified decision pipeline.

One pass, five steps:
1. Retrieve similar ads
2. Estimate the outcome from neighbors
3. Adjust by trait contrast
4. Measure confidence
5. Low confidence -> blend with (or fall back to) the legacy score, and
   describe which data would help

Returns a score, a confidence level and a fixed four-section explanation.
Callers go through ``safe_run``, which turns a timeout or error into the
neutral fallback result.
"""

import time
import logging
from typing import List, Optional

from orbcast.core.config import EngineConfig
from orbcast.core.models import (
    AdEntry,
    ContrastiveAnalysis,
    FallbackReason,
    NeighborAd,
    NeighborPrediction,
    PipelineResult,
    PredictionMethod,
)
from orbcast.core.observability import get_logfire
from orbcast.core.store import OrbStore

from .ad_orb import convert_to_ad_orb
from .contrastive import SCOPE_QUERY, get_top_impactful_traits, perform_contrastive_analysis
from .embedding_service import EmbeddingService
from .explanation import build_four_section_explanation, build_pipeline_recommendations, get_confidence_level
from .legacy import LegacyPredictor, TraitHeuristicPredictor
from .neighbor_prediction import apply_contrastive_adjustment, calculate_blend_alpha, compute_neighbor_prediction
from .retrieval import RetrievalService, get_neighbor_stats, has_enough_neighbors
from .safety import clamp_score, safe_execute, with_timeout

logger = logging.getLogger(__name__)

BASELINE_SCORE = 50.0

# Confidence per neighbor when there are too few to predict from
CONFIDENCE_PER_THIN_NEIGHBOR = 10

# Maximum confidence reduction when every analyzed trait is low-confidence
LOW_CONFIDENCE_PENALTY = 0.2


def calculate_pipeline_confidence(
    neighbor_count: int,
    neighbor_confidence: float,
    analysis: Optional[ContrastiveAnalysis],
    default_k: int,
) -> float:
    """
    Neighbor confidence scaled by how full the neighbor set is, then reduced
    by the share of low-confidence trait effects. Clamped to [0, 100].
    """
    neighbor_ratio = min(neighbor_count / default_k, 1.0) if default_k > 0 else 1.0
    confidence = neighbor_confidence * (0.5 + 0.5 * neighbor_ratio)

    if analysis is not None:
        low_ratio = len(analysis.low_confidence) / max(len(analysis.trait_effects), 1)
        confidence *= 1 - LOW_CONFIDENCE_PENALTY * low_ratio

    return max(0.0, min(100.0, confidence))


class PredictionPipeline:
    """
    Unified pipeline over the retrieval components.

    Args:
        store: Orb store holding historical ads (the query is saved into it)
        embedding_service: Embedding service (defaults to fallback-only)
        legacy_predictor: Non-retrieval predictor for blending and fallback
        config: Engine configuration; ``config.pipeline`` drives the decisions
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

    async def _legacy_score(self, ad: AdEntry) -> float:
        async def predict() -> float:
            return (await self.legacy_predictor.predict(ad)).score

        return await safe_execute(predict, self.config.safety.default_fallback_score)

    async def run(self, ad: AdEntry) -> PipelineResult:
        """
        Run the pipeline for one ad.

        Returns:
            PipelineResult. Method is ``rag`` when neighbors suffice and
            confidence clears the threshold, ``hybrid`` when neighbors suffice
            and the legacy blend is enabled, ``fallback`` otherwise.
        """
        start = time.perf_counter()
        rag_config = self.config.rag
        pipeline_config = self.config.pipeline

        # Step 1: retrieve
        query = convert_to_ad_orb(ad)
        query = await self.embedding_service.generate_orb_embedding(query)
        self.store.save(query)
        neighbors: List[NeighborAd] = await self.retrieval.retrieve_similar_ads_with_results(
            query, rag_config.default_k
        )

        # Steps 2-3: estimate and adjust
        analysis: Optional[ContrastiveAnalysis] = None
        neighbor_prediction: Optional[NeighborPrediction] = None
        enough = has_enough_neighbors(neighbors, rag_config)

        if enough:
            neighbor_prediction = compute_neighbor_prediction(neighbors, rag_config)
            analysis = perform_contrastive_analysis(
                query, neighbors, rag_config, self.config.safety, scope=SCOPE_QUERY
            )
            adjusted = apply_contrastive_adjustment(neighbor_prediction.prediction, analysis)
            neighbor_confidence = neighbor_prediction.confidence
        else:
            adjusted = BASELINE_SCORE
            neighbor_confidence = float(len(neighbors) * CONFIDENCE_PER_THIN_NEIGHBOR)

        # Step 4: confidence
        confidence = calculate_pipeline_confidence(
            len(neighbors), neighbor_confidence, analysis, rag_config.default_k
        )
        level = get_confidence_level(confidence, pipeline_config)

        # Step 5: decide
        if enough and confidence >= pipeline_config.confidence_threshold:
            method = PredictionMethod.RAG
            final_score = adjusted
        elif enough and pipeline_config.enable_legacy_fallback:
            method = PredictionMethod.HYBRID
            alpha = calculate_blend_alpha(neighbors, rag_config)
            final_score = alpha * adjusted + (1 - alpha) * await self._legacy_score(ad)
        else:
            method = PredictionMethod.FALLBACK
            if pipeline_config.enable_legacy_fallback:
                final_score = await self._legacy_score(ad)
            else:
                final_score = adjusted

        explanation = build_four_section_explanation(
            neighbors, analysis, confidence, level, pipeline_config
        )
        compute_time_ms = round((time.perf_counter() - start) * 1000, 1)

        logger.info(
            f"Pipeline for {ad.id}: {final_score:.1f} via {method.value} "
            f"(confidence {confidence:.0f}%, {len(neighbors)} neighbors, "
            f"avg similarity {get_neighbor_stats(neighbors).avg_similarity:.2f})"
        )

        return PipelineResult(
            score=round(clamp_score(final_score, self.config.safety), 1),
            confidence=round(confidence),
            confidence_level=level,
            method=method,
            neighbor_count=len(neighbors),
            neighbor_prediction=neighbor_prediction,
            contrastive_analysis=analysis,
            trait_effects=(
                get_top_impactful_traits(analysis, pipeline_config.max_traits_to_explain) if analysis else []
            ),
            explanation=explanation,
            summary=explanation.similar_ads.summary,
            recommendations=build_pipeline_recommendations(explanation),
            compute_time_ms=compute_time_ms,
        )

    def _neutral_result(self, reason: FallbackReason, start: float) -> PipelineResult:
        safety = self.config.safety
        level = get_confidence_level(safety.default_fallback_confidence, self.config.pipeline)
        explanation = build_four_section_explanation(
            [], None, safety.default_fallback_confidence, level, self.config.pipeline
        )
        return PipelineResult(
            score=safety.default_fallback_score,
            confidence=safety.default_fallback_confidence,
            confidence_level=level,
            method=PredictionMethod.FALLBACK,
            explanation=explanation,
            summary=explanation.similar_ads.summary,
            recommendations=build_pipeline_recommendations(explanation),
            compute_time_ms=round((time.perf_counter() - start) * 1000, 1),
            fallback_reason=reason,
        )

    async def safe_run(self, ad: AdEntry, timeout_ms: Optional[int] = None) -> PipelineResult:
        """
        Run the pipeline under the safety timeout. Never raises.

        A timeout or any error yields the neutral fallback result
        (default score and confidence) with ``fallback_reason`` set.
        """
        start = time.perf_counter()
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.safety.rag_timeout_ms

        with get_logfire().span("pipeline_run", ad_id=ad.id):
            try:
                result = await with_timeout(self.run(ad), timeout_ms, None)
            except Exception as e:
                logger.error(f"Pipeline failed for {ad.id}, using neutral default: {e}")
                return self._neutral_result(FallbackReason.ERROR, start)

            if result is None:
                logger.warning(f"Pipeline timed out for {ad.id} after {timeout_ms}ms, using neutral default")
                return self._neutral_result(FallbackReason.TIMEOUT, start)

            return result
