"""
Data-gap detection.

Inspects a prediction's neighbors and trait effects and describes what
comparable data is missing: too few or too dissimilar neighbors, noisy
outcomes, thin platform coverage, and traits whose effect cannot yet be
measured. Each gap becomes a DataNeed the marketplace matcher can act on.
"""

from __future__ import annotations

import math
import time
import logging
from collections import Counter
from typing import Dict, List, Optional

import numpy as np

from orbcast.core.config import (
    DEFAULT_MARKETPLACE_CONFIG,
    DEFAULT_RAG_CONFIG,
    MarketplaceConfig,
    RAGConfig,
)
from orbcast.core.models import DataNeed, GapAnalysis, NeedDimension, NeighborAd, Severity, TraitEffect

from .ad_orb import get_orb_success_score
from .contrastive import LOW_CONFIDENCE_THRESHOLD

logger = logging.getLogger(__name__)

# Severity thresholds
MIN_SAMPLES_FOR_LOW = 5
MIN_SAMPLES_FOR_MEDIUM = 10
MIN_CONFIDENCE_FOR_HIGH = 40
MIN_CONFIDENCE_FOR_MEDIUM = 60

# Outcome spread (population std-dev) that marks neighbors as inconsistent
HIGH_VARIANCE_MEDIUM = 25
HIGH_VARIANCE_HIGH = 35

# Assumed confidence when there are too few neighbors to measure it
THIN_NEIGHBOR_CONFIDENCE = 30

SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


def _need_id(dimension: NeedDimension, value: str) -> str:
    return f"need_{dimension.value}_{value}_{int(time.time() * 1000)}"


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def calculate_severity(current_samples: int, confidence: float) -> Severity:
    if current_samples < MIN_SAMPLES_FOR_LOW or confidence < MIN_CONFIDENCE_FOR_HIGH:
        return Severity.HIGH
    if current_samples < MIN_SAMPLES_FOR_MEDIUM or confidence < MIN_CONFIDENCE_FOR_MEDIUM:
        return Severity.MEDIUM
    return Severity.LOW


def estimate_confidence_impact(current_samples: int, required_samples: int, current_confidence: float) -> float:
    """Diminishing-returns gain: (100 - confidence) * (1 - e^(-deficit/required))."""
    if required_samples <= 0:
        return 0.0
    deficit = max(0, required_samples - current_samples)
    max_gain = 100 - current_confidence
    return float(round(max_gain * (1 - math.exp(-deficit / required_samples))))


# =============================================================================
# Detectors
# =============================================================================

def detect_neighbor_needs(neighbors: List[NeighborAd], config: RAGConfig = DEFAULT_RAG_CONFIG) -> List[DataNeed]:
    """Too few neighbors, weak similarity, or inconsistent outcomes."""
    needs: List[DataNeed] = []

    if len(neighbors) < config.min_neighbors:
        needs.append(DataNeed(
            id=_need_id(NeedDimension.TRAIT, "similar_ads"),
            dimension=NeedDimension.TRAIT,
            value="similar_ads",
            reason=f"Only {len(neighbors)} similar ads found (need {config.min_neighbors} minimum)",
            severity=Severity.HIGH,
            current_samples=len(neighbors),
            required_samples=config.min_neighbors,
            confidence_impact=estimate_confidence_impact(
                len(neighbors), config.min_neighbors, THIN_NEIGHBOR_CONFIDENCE
            ),
        ))

    if neighbors:
        # Percent scale, comparable to min_similarity * 100
        avg_similarity = sum(n.weighted_similarity for n in neighbors) / len(neighbors) * 100
        if avg_similarity < config.min_similarity * 100:
            needs.append(DataNeed(
                id=_need_id(NeedDimension.TRAIT, "similarity_quality"),
                dimension=NeedDimension.TRAIT,
                value="similarity_quality",
                reason=f"Low similarity scores (avg: {avg_similarity:.1f}%)",
                severity=Severity.HIGH if avg_similarity < 30 else Severity.MEDIUM,
                current_samples=len(neighbors),
                required_samples=config.min_neighbors,
                confidence_impact=float(round(60 - avg_similarity)),
                context={"avg_similarity": avg_similarity},
            ))

    scores = np.array(
        [s for s in (get_orb_success_score(n.orb) for n in neighbors) if s is not None],
        dtype=float,
    )
    if scores.size >= 3:
        std_dev = float(scores.std())
        if std_dev > HIGH_VARIANCE_MEDIUM:
            needs.append(DataNeed(
                id=_need_id(NeedDimension.TRAIT, "outcome_variance"),
                dimension=NeedDimension.TRAIT,
                value="outcome_variance",
                reason=f"High outcome variance (std dev: {std_dev:.1f}) - results are inconsistent",
                severity=Severity.HIGH if std_dev > HIGH_VARIANCE_HIGH else Severity.MEDIUM,
                current_samples=int(scores.size),
                required_samples=math.ceil(scores.size * 1.5),
                confidence_impact=float(round(std_dev - 15)),
                context={"variance": std_dev},
            ))

    return needs


def detect_platform_needs(
    neighbors: List[NeighborAd], query_platform: Optional[str], config: RAGConfig = DEFAULT_RAG_CONFIG
) -> List[DataNeed]:
    """Not enough same-platform neighbors (twice the usual minimum)."""
    if not query_platform:
        return []

    same_platform = [n for n in neighbors if n.orb.metadata.platform == query_platform]
    current = len(same_platform)
    required = config.min_neighbors * 2
    if current >= required:
        return []

    avg_similarity = (
        sum(n.weighted_similarity for n in same_platform) / current if current else 0.0
    )
    confidence = current / required * 100

    return [DataNeed(
        id=_need_id(NeedDimension.PLATFORM, query_platform),
        dimension=NeedDimension.PLATFORM,
        value=query_platform,
        reason=(
            f"Only {current} similar ads on {query_platform} "
            f"(need {required} for reliable prediction)"
        ),
        severity=calculate_severity(current, confidence),
        current_samples=current,
        required_samples=required,
        confidence_impact=estimate_confidence_impact(current, required, confidence),
        context={"avg_similarity": avg_similarity},
    )]


def detect_trait_needs(trait_effects: List[TraitEffect], config: RAGConfig = DEFAULT_RAG_CONFIG) -> List[DataNeed]:
    """One need per trait effect too uncertain to act on."""
    needs = []
    required = config.min_sample_size * 4

    for effect in trait_effects:
        if effect.confidence >= LOW_CONFIDENCE_THRESHOLD:
            continue

        needs.append(DataNeed(
            id=_need_id(NeedDimension.TRAIT, effect.trait),
            dimension=NeedDimension.TRAIT,
            value=f"{effect.trait}={_format_value(effect.trait_value)}",
            reason=(
                f'Only {effect.n_with} examples with "{effect.trait}" '
                f"(confidence: {effect.confidence:.0f}%)"
            ),
            severity=calculate_severity(effect.n_with, effect.confidence),
            current_samples=effect.n_with,
            required_samples=required,
            confidence_impact=estimate_confidence_impact(effect.n_with, required, effect.confidence),
            context={"trait_confidence": effect.confidence, "variance": abs(effect.lift) / 2},
        ))
    return needs


# =============================================================================
# Aggregation
# =============================================================================

def deduplicate_needs(needs: List[DataNeed]) -> List[DataNeed]:
    """One need per (dimension, value), keeping the more severe instance."""
    unique: Dict[str, DataNeed] = {}
    for need in needs:
        key = f"{need.dimension.value}:{need.value}"
        existing = unique.get(key)
        if existing is None or SEVERITY_RANK[need.severity] < SEVERITY_RANK[existing.severity]:
            unique[key] = need
    return list(unique.values())


def sort_needs(needs: List[DataNeed]) -> List[DataNeed]:
    return sorted(needs, key=lambda n: (SEVERITY_RANK[n.severity], -n.confidence_impact))


def detect_data_needs(
    neighbors: List[NeighborAd],
    trait_effects: List[TraitEffect],
    query_platform: Optional[str] = None,
    current_confidence: float = 50.0,
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    marketplace_config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG,
) -> List[DataNeed]:
    """
    All data needs for one prediction, deduplicated and sorted.

    Returns an empty list when confidence and neighbor count both clear the
    marketplace thresholds.
    """
    if (
        current_confidence >= marketplace_config.confidence_threshold
        and len(neighbors) >= marketplace_config.min_neighbor_threshold
    ):
        return []

    needs = (
        detect_neighbor_needs(neighbors, config)
        + detect_platform_needs(neighbors, query_platform, config)
        + detect_trait_needs(trait_effects, config)
    )
    return sort_needs(deduplicate_needs(needs))


def summarize_needs(needs: List[DataNeed], current_confidence: float) -> GapAnalysis:
    """Counts, significance, primary dimension and potential confidence for a need list."""
    high = sum(1 for n in needs if n.severity == Severity.HIGH)
    medium = sum(1 for n in needs if n.severity == Severity.MEDIUM)
    low = sum(1 for n in needs if n.severity == Severity.LOW)

    max_gain = sum(n.confidence_impact for n in needs)
    primary = None
    if needs:
        primary = Counter(n.dimension for n in needs).most_common(1)[0][0]

    return GapAnalysis(
        needs=needs,
        high_severity_count=high,
        medium_severity_count=medium,
        low_severity_count=low,
        has_significant_gaps=high > 0 or medium >= 2,
        primary_gap_dimension=primary,
        current_confidence=current_confidence,
        potential_confidence=min(100.0, current_confidence + max_gain),
        max_confidence_gain=max_gain,
    )


def analyze_gaps(
    neighbors: List[NeighborAd],
    trait_effects: List[TraitEffect],
    query_platform: Optional[str] = None,
    current_confidence: float = 50.0,
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    marketplace_config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG,
) -> GapAnalysis:
    """Detect needs and summarize them into a GapAnalysis."""
    needs = detect_data_needs(
        neighbors, trait_effects, query_platform, current_confidence, config, marketplace_config
    )
    analysis = summarize_needs(needs, current_confidence)
    if needs:
        logger.info(
            f"Detected {len(needs)} data needs ({analysis.high_severity_count} high severity), "
            f"primary dimension: {analysis.primary_gap_dimension.value}"
        )
    return analysis


# =============================================================================
# Quick checks
# =============================================================================

def should_show_marketplace_suggestions(
    neighbor_count: int,
    confidence: float,
    avg_similarity: float,
    config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG,
) -> bool:
    """avg_similarity is on the 0-100 scale."""
    if not config.enabled:
        return False
    return (
        neighbor_count < config.min_neighbor_threshold
        or confidence < config.confidence_threshold
        or avg_similarity < config.min_similarity_threshold
    )


def get_primary_gap_reason(
    neighbor_count: int,
    confidence: float,
    avg_similarity: float,
    config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG,
) -> str:
    if neighbor_count < config.min_neighbor_threshold:
        return f"Only {neighbor_count} similar ads found (minimum: {config.min_neighbor_threshold})"
    if avg_similarity < config.min_similarity_threshold:
        return f"Low similarity to existing ads ({avg_similarity:.0f}% average)"
    if confidence < config.confidence_threshold:
        return f"Prediction confidence is {confidence:.0f}% (threshold: {config.confidence_threshold:.0f}%)"
    return "Prediction data is sufficient"
