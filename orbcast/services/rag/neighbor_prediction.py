"""
Neighbor-based prediction: weighted score, spread, confidence and blend alpha.
"""

import math
import logging
from typing import List, Optional, Tuple

import numpy as np

from orbcast.core.config import DEFAULT_RAG_CONFIG, RAGConfig
from orbcast.core.models import ContrastiveAnalysis, NeighborAd, NeighborPrediction, PredictionBounds

from .ad_orb import get_orb_success_score
from .safety import clamp_score

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0

# Neighbor count at which sample-size factors saturate
SAMPLE_SATURATION = 15

# Confidence factor weights
SAMPLE_WEIGHT = 0.35
SIMILARITY_WEIGHT = 0.35
VARIANCE_WEIGHT = 0.15
RECENCY_WEIGHT = 0.15

CONTRAST_DAMPING = 0.5


def _scored(neighbors: List[NeighborAd]) -> List[NeighborAd]:
    return [n for n in neighbors if get_orb_success_score(n.orb) is not None]


def _scores(neighbors: List[NeighborAd]) -> np.ndarray:
    return np.array(
        [s for s in (get_orb_success_score(n.orb) for n in neighbors) if s is not None],
        dtype=float,
    )


def compute_weighted_prediction(neighbors: List[NeighborAd]) -> float:
    """
    Similarity-weighted average success score.

    0 for an empty list; 50 when no neighbor carries weight or the result is
    not finite. Always within [0, 100].
    """
    if not neighbors:
        return 0.0

    total_weight = 0.0
    weighted_sum = 0.0
    for neighbor in neighbors:
        score = get_orb_success_score(neighbor.orb)
        if score is None:
            continue
        weighted_sum += score * neighbor.weighted_similarity
        total_weight += neighbor.weighted_similarity

    if total_weight == 0:
        return NEUTRAL_SCORE

    result = weighted_sum / total_weight
    if not math.isfinite(result):
        return NEUTRAL_SCORE
    return clamp_score(result)


def compute_simple_average_prediction(neighbors: List[NeighborAd]) -> float:
    scores = _scores(neighbors)
    if scores.size == 0:
        return NEUTRAL_SCORE
    result = float(scores.mean())
    if not math.isfinite(result):
        return NEUTRAL_SCORE
    return clamp_score(result)


def compute_variance(neighbors: List[NeighborAd]) -> float:
    """Sample standard deviation of neighbor success scores (0 for fewer than 2)."""
    scores = _scores(neighbors)
    if scores.size < 2:
        return 0.0
    return float(scores.std(ddof=1))


def compute_score_range(neighbors: List[NeighborAd]) -> Tuple[float, float]:
    """(min, max) success score; (0, 0) when nothing is scored."""
    scores = _scores(neighbors)
    if scores.size == 0:
        return 0.0, 0.0
    return float(scores.min()), float(scores.max())


def compute_confidence(neighbors: List[NeighborAd], config: RAGConfig = DEFAULT_RAG_CONFIG) -> float:
    """
    Prediction confidence (0-100).

    Weighted blend of sample size (saturating at 15), average similarity,
    a variance penalty and average recency.
    """
    valid = _scored(neighbors)
    if not valid:
        return 0.0

    sample_factor = min(1.0, len(valid) / SAMPLE_SATURATION)
    similarity_factor = sum(n.hybrid_similarity for n in valid) / len(valid)

    variance_factor = 1.0
    if config.variance_penalty_enabled:
        std_dev = compute_variance(valid)
        if std_dev > config.max_variance_for_full_confidence:
            variance_factor = config.max_variance_for_full_confidence / std_dev

    recency_factor = sum(n.recency_weight for n in valid) / len(valid)

    confidence = (
        sample_factor * SAMPLE_WEIGHT
        + similarity_factor * SIMILARITY_WEIGHT
        + variance_factor * VARIANCE_WEIGHT
        + recency_factor * RECENCY_WEIGHT
    ) * 100

    return float(round(min(100.0, max(0.0, confidence))))


def calculate_blend_alpha(neighbors: List[NeighborAd], config: RAGConfig = DEFAULT_RAG_CONFIG) -> float:
    """
    Weight of the retrieval score against the legacy score, in [0, 1].

    Starts at base_alpha and shrinks for thin, dissimilar or noisy
    neighborhoods. Zero below min_neighbors.
    """
    valid = _scored(neighbors)
    if len(valid) < config.min_neighbors:
        return 0.0

    alpha = config.base_alpha

    if config.alpha_adjust_for_neighbors:
        neighbor_factor = min(1.0, len(valid) / SAMPLE_SATURATION)
        alpha *= 0.5 + neighbor_factor * 0.5

    if config.alpha_adjust_for_similarity:
        avg_similarity = sum(n.hybrid_similarity for n in valid) / len(valid)
        if avg_similarity < config.min_similarity:
            alpha *= 0.5
        else:
            alpha *= 0.7 + avg_similarity * 0.3

    if config.variance_penalty_enabled:
        if compute_variance(valid) > config.max_variance_for_full_confidence * 2:
            alpha *= 0.7

    return max(0.0, min(1.0, alpha))


def get_prediction_bounds(neighbors: List[NeighborAd], prediction: float) -> PredictionBounds:
    """+/-1.5 sigma with 10+ neighbors (else 2 sigma), inside the observed range and [0, 100]."""
    std_dev = compute_variance(neighbors)
    low, high = compute_score_range(neighbors)
    bound = std_dev * 1.5 if len(neighbors) >= 10 else std_dev * 2

    return PredictionBounds(
        lower=max(0.0, max(low, prediction - bound)),
        upper=min(100.0, min(high, prediction + bound)),
    )


def compute_neighbor_prediction(
    neighbors: List[NeighborAd], config: RAGConfig = DEFAULT_RAG_CONFIG
) -> NeighborPrediction:
    """Prediction, confidence, spread and bounds from the scored neighbors."""
    valid = _scored(neighbors)
    if not valid:
        return NeighborPrediction(
            prediction=0.0,
            variance=0.0,
            confidence=0.0,
            neighbor_count=0,
            avg_similarity=0.0,
            avg_recency=0.0,
            bounds=PredictionBounds(lower=0.0, upper=0.0),
        )

    prediction = compute_weighted_prediction(valid)
    bounds = get_prediction_bounds(valid, prediction)
    low, high = compute_score_range(valid)

    return NeighborPrediction(
        prediction=round(prediction, 1),
        variance=round(compute_variance(valid), 1),
        confidence=compute_confidence(valid, config),
        neighbor_count=len(valid),
        avg_similarity=round(sum(n.hybrid_similarity for n in valid) / len(valid), 2),
        avg_recency=round(sum(n.recency_weight for n in valid) / len(valid), 2),
        min_score=low,
        max_score=high,
        bounds=PredictionBounds(lower=round(bounds.lower, 1), upper=round(bounds.upper, 1)),
    )


def apply_contrastive_adjustment(base_prediction: float, analysis: Optional[ContrastiveAnalysis]) -> float:
    """Shift the base prediction by dampened, confidence-weighted top trait lifts."""
    if analysis is None:
        return base_prediction

    adjustment = 0.0
    for effect in analysis.top_positive + analysis.top_negative:
        adjustment += effect.lift * (effect.confidence / 100) * CONTRAST_DAMPING

    return clamp_score(base_prediction + adjustment)
