"""
Safe Predictor - the single entry point for predictions.

Wraps the RAG predictor so that a prediction is always returned:
- RAG disabled by flag -> legacy prediction
- RAG timed out, produced an invalid score or raised -> legacy prediction
- Legacy predictor failed -> neutral default (50 / 0)

Every outcome is written to the prediction log with its method and
fallback reason.
"""

import time
import logging
from typing import List, Optional

from orbcast.core.config import EngineConfig
from orbcast.core.models import (
    AdEntry,
    ConfidenceInputs,
    FallbackReason,
    PredictionLog,
    PredictionMethod,
    PredictionReadiness,
    RAGPredictionResult,
    SafePredictionResult,
    ScoreBreakdown,
)
from orbcast.core.observability import get_logfire
from orbcast.core.store import OrbStore

from .embedding_service import EmbeddingService
from .legacy import LegacyPredictor, TraitHeuristicPredictor
from .prediction_log import PredictionLogger
from .rag_predictor import RAGPredictor
from .safety import clamp_score, is_valid_score, with_timeout

logger = logging.getLogger(__name__)


class SafePredictor:
    """
    Prediction with guaranteed output.

    Args:
        store: Orb store holding historical ads
        embedding_service: Embedding service (defaults to fallback-only)
        legacy_predictor: Non-retrieval predictor used for fallbacks
        config: Engine configuration (flags, safety bounds, timeouts)
        prediction_logger: Prediction log (a new one per predictor by default)
        rag_predictor: Pre-built RAG predictor; built from the arguments above when None
    """

    def __init__(
        self,
        store: OrbStore,
        embedding_service: Optional[EmbeddingService] = None,
        legacy_predictor: Optional[LegacyPredictor] = None,
        config: Optional[EngineConfig] = None,
        prediction_logger: Optional[PredictionLogger] = None,
        rag_predictor: Optional[RAGPredictor] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.legacy_predictor = legacy_predictor or TraitHeuristicPredictor()
        self.prediction_logger = prediction_logger or PredictionLogger(self.config.flags)
        self.rag_predictor = rag_predictor or RAGPredictor(
            store,
            embedding_service=embedding_service,
            legacy_predictor=self.legacy_predictor,
            config=self.config,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 1)

    async def _safe_legacy_predict(self, ad: AdEntry) -> SafePredictionResult:
        """Legacy prediction, or the neutral default if the legacy predictor raises."""
        safety = self.config.safety
        try:
            prediction = await self.legacy_predictor.predict(ad)
            return SafePredictionResult(
                score=clamp_score(prediction.score, safety),
                confidence=clamp_score(prediction.confidence, safety),
                method=PredictionMethod.LEGACY,
                legacy_score=prediction.score,
            )
        except Exception as e:
            logger.error(f"Legacy prediction failed for {ad.id}, using neutral default: {e}")
            return SafePredictionResult(
                score=safety.default_fallback_score,
                confidence=safety.default_fallback_confidence,
                method=PredictionMethod.LEGACY,
                fallback_reason=FallbackReason.ERROR,
            )

    async def _fallback(
        self, ad: AdEntry, reason: FallbackReason, start: float, error: Optional[str] = None
    ) -> SafePredictionResult:
        result = await self._safe_legacy_predict(ad)
        result = result.model_copy(update={
            "fallback_reason": reason,
            "compute_time_ms": self._elapsed_ms(start),
        })
        self.prediction_logger.log_prediction(PredictionLog(
            ad_id=ad.id,
            method=result.method,
            fallback_reason=reason,
            scores=ScoreBreakdown(legacy=result.legacy_score, final=result.score),
            compute_time_ms=result.compute_time_ms,
            error=error,
        ))
        return result

    def _accept(self, ad: AdEntry, rag_result: RAGPredictionResult, start: float) -> SafePredictionResult:
        result = SafePredictionResult(
            score=clamp_score(rag_result.predicted_score, self.config.safety),
            confidence=clamp_score(rag_result.confidence, self.config.safety),
            method=rag_result.method,
            fallback_reason=rag_result.fallback_reason,
            legacy_score=rag_result.legacy_score,
            rag_prediction=rag_result,
            compute_time_ms=self._elapsed_ms(start),
        )

        neighbor_prediction = rag_result.rag_prediction
        self.prediction_logger.log_prediction(PredictionLog(
            ad_id=ad.id,
            method=result.method,
            fallback_reason=result.fallback_reason,
            confidence_inputs=ConfidenceInputs(
                neighbors=rag_result.neighbor_count,
                similarity=neighbor_prediction.avg_similarity if neighbor_prediction else 0.0,
                variance=neighbor_prediction.variance if neighbor_prediction else 0.0,
            ),
            scores=ScoreBreakdown(
                rag=neighbor_prediction.prediction if neighbor_prediction else None,
                legacy=rag_result.legacy_score,
                final=result.score,
            ),
            blend_alpha=rag_result.blend_alpha,
            marketplace_matches=len(rag_result.marketplace.suggestions) if rag_result.marketplace else 0,
            compute_time_ms=result.compute_time_ms,
        ))
        return result

    async def safe_predict(
        self, ad: AdEntry, use_hybrid: bool = True, timeout_ms: Optional[int] = None
    ) -> SafePredictionResult:
        """
        Predict an ad's success score. Never raises.

        Args:
            ad: Ad to score
            use_hybrid: Blend with the legacy score (False uses neighbors only)
            timeout_ms: Overall RAG timeout (default safety.rag_timeout_ms)

        Returns:
            SafePredictionResult with a score in [0, 100]; ``fallback_reason``
            is set whenever the retrieval path was not used as-is
        """
        start = time.perf_counter()
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.safety.rag_timeout_ms
        lf = get_logfire()

        with lf.span("safe_predict", ad_id=ad.id, use_hybrid=use_hybrid):
            if not self.config.flags.enable_rag:
                return await self._fallback(ad, FallbackReason.RAG_DISABLED, start)

            try:
                attempt = (
                    self.rag_predictor.predict(ad) if use_hybrid
                    else self.rag_predictor.predict_rag_only(ad)
                )
                rag_result = await with_timeout(attempt, timeout_ms, None)
            except Exception as e:
                logger.error(f"RAG prediction failed for {ad.id}: {e}")
                return await self._fallback(ad, FallbackReason.ERROR, start, error=str(e))

            if rag_result is None:
                return await self._fallback(
                    ad, FallbackReason.TIMEOUT, start, error=f"RAG timed out after {timeout_ms}ms"
                )

            if not is_valid_score(rag_result.predicted_score, self.config.safety):
                logger.warning(f"RAG produced invalid score for {ad.id}: {rag_result.predicted_score}")
                return await self._fallback(
                    ad, FallbackReason.INVALID_SCORE, start,
                    error=f"Invalid score: {rag_result.predicted_score}",
                )

            return self._accept(ad, rag_result, start)

    async def safe_predict_batch(
        self, ads: List[AdEntry], use_hybrid: bool = True, timeout_ms: Optional[int] = None
    ) -> List[SafePredictionResult]:
        """Sequential safe predictions; each ad is isolated from the others."""
        results = []
        for ad in ads:
            results.append(await self.safe_predict(ad, use_hybrid, timeout_ms))
        return results

    def is_rag_ready(self) -> bool:
        return len(self.store.list_with_results()) >= self.config.rag.min_neighbors

    def get_prediction_readiness(self) -> PredictionReadiness:
        """Whether the store holds enough scored ads for retrieval-based prediction."""
        state = self.store.state()
        required = self.config.rag.min_neighbors
        with_results = len(self.store.list_with_results())

        if not self.config.flags.enable_rag:
            reason = "RAG is disabled by feature flag"
        elif with_results < required:
            reason = f"Need {required} ads with results, have {with_results}"
        else:
            reason = "Ready"

        return PredictionReadiness(
            ready=self.config.flags.enable_rag and with_results >= required,
            total_orbs=state.total_orbs,
            orbs_with_results=with_results,
            orbs_with_embeddings=state.orbs_with_embeddings,
            required_orbs=required,
            reason=reason,
        )
