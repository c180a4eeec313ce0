"""
Contrastive trait analysis.

Splits retrieved neighbors into WITH / WITHOUT groups for a trait and
measures the difference in similarity-weighted success (the lift). This is
the counterfactual reasoning step: "among ads like this one, those that
also had X did Y points better".
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from orbcast.core.config import DEFAULT_RAG_CONFIG, DEFAULT_SAFETY_CONFIG, RAGConfig, SafetyConfig
from orbcast.core.models import (
    AdOrb,
    ContrastiveAnalysis,
    NeighborAd,
    Recommendation,
    TraitEffect,
    TraitValue,
)

from .ad_orb import get_orb_success_score, orb_has_trait
from .safety import clamp_lift

logger = logging.getLogger(__name__)

# Below this confidence an effect is "needs more data"
LOW_CONFIDENCE_THRESHOLD = 40

# Sample count at which the sample-size factor saturates
CONFIDENCE_SAMPLE_CEILING = 20

# Insufficient-evidence confidence cap
INSUFFICIENT_CONFIDENCE_CAP = 30

TOP_EFFECTS = 5

SCOPE_ALL = "all"
SCOPE_QUERY = "query"


# =============================================================================
# Splitting + lift
# =============================================================================

def split_by_trait(
    neighbors: List[NeighborAd], trait_key: str, trait_value: Optional[TraitValue] = None
) -> Tuple[List[NeighborAd], List[NeighborAd]]:
    """Partition neighbors into (with, without) for a trait (and optional value)."""
    with_group: List[NeighborAd] = []
    without_group: List[NeighborAd] = []
    for neighbor in neighbors:
        if orb_has_trait(neighbor.orb, trait_key, trait_value):
            with_group.append(neighbor)
        else:
            without_group.append(neighbor)
    return with_group, without_group


def _scored_count(group: List[NeighborAd]) -> int:
    return sum(1 for n in group if get_orb_success_score(n.orb) is not None)


def weighted_average_success(group: List[NeighborAd]) -> float:
    """Success score averaged with each neighbor's weighted similarity as weight."""
    total_weight = 0.0
    weighted_sum = 0.0
    for neighbor in group:
        score = get_orb_success_score(neighbor.orb)
        if score is None:
            continue
        weighted_sum += score * neighbor.weighted_similarity
        total_weight += neighbor.weighted_similarity
    return weighted_sum / total_weight if total_weight > 0 else 0.0


def compute_lift(
    with_group: List[NeighborAd], without_group: List[NeighborAd]
) -> Tuple[float, float, float]:
    """Returns (lift, avg_with, avg_without)."""
    avg_with = weighted_average_success(with_group)
    avg_without = weighted_average_success(without_group)
    return avg_with - avg_without, avg_with, avg_without


def calculate_trait_confidence(
    with_group: List[NeighborAd], without_group: List[NeighborAd], min_sample_size: int
) -> float:
    """
    Confidence (0-100) in a trait effect.

    Sample-size adequacy times group balance, scaled by the average hybrid
    similarity of every neighbor involved.
    """
    n_with = _scored_count(with_group)
    n_without = _scored_count(without_group)

    if n_with < min_sample_size or n_without < min_sample_size:
        confidence = (n_with + n_without) / (min_sample_size * 4) * 50
    else:
        sample_factor = min(1.0, (n_with + n_without) / CONFIDENCE_SAMPLE_CEILING)
        balance = min(n_with, n_without) / max(n_with, n_without)
        balance_factor = 0.5 + balance * 0.5
        confidence = sample_factor * balance_factor * 100

    involved = with_group + without_group
    avg_similarity = sum(n.hybrid_similarity for n in involved) / max(1, len(involved))
    confidence *= avg_similarity

    return float(round(min(100.0, max(0.0, confidence))))


def get_recommendation(lift: float, confidence: float, significance_threshold: float) -> Recommendation:
    if confidence < LOW_CONFIDENCE_THRESHOLD:
        return Recommendation.TEST
    if abs(lift) < significance_threshold:
        return Recommendation.NEUTRAL
    return Recommendation.USE if lift > 0 else Recommendation.AVOID


# =============================================================================
# Trait effects
# =============================================================================

def analyze_trait_effect(
    neighbors: List[NeighborAd],
    trait_key: str,
    trait_value: Optional[TraitValue] = None,
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
) -> TraitEffect:
    """
    Measure the effect of one trait across the neighbor set.

    Either group with fewer than ``min_sample_size_per_group`` scored members
    yields an insufficient-evidence effect: lift 0, recommendation ``test``.
    """
    with_group, without_group = split_by_trait(neighbors, trait_key, trait_value)
    n_with = _scored_count(with_group)
    n_without = _scored_count(without_group)
    value = trait_value if trait_value is not None else True

    min_group = safety_config.min_sample_size_per_group
    if n_with < min_group or n_without < min_group:
        return TraitEffect(
            trait=trait_key,
            trait_value=value,
            lift=0.0,
            lift_percent=0.0,
            confidence=float(min(n_with + n_without, INSUFFICIENT_CONFIDENCE_CAP)),
            n_with=n_with,
            n_without=n_without,
            is_significant=False,
            recommendation=Recommendation.TEST,
        )

    raw_lift, avg_with, avg_without = compute_lift(with_group, without_group)
    lift = clamp_lift(raw_lift, safety_config)

    confidence = calculate_trait_confidence(with_group, without_group, config.min_sample_size)
    is_significant = (
        n_with >= config.min_sample_size
        and n_without >= config.min_sample_size
        and abs(lift) >= config.significance_threshold
    )
    lift_percent = (lift / avg_without) * 100 if avg_without > 0 else 0.0

    return TraitEffect(
        trait=trait_key,
        trait_value=value,
        lift=lift,
        lift_percent=lift_percent,
        confidence=confidence,
        n_with=n_with,
        n_without=n_without,
        avg_success_with=avg_with,
        avg_success_without=avg_without,
        is_significant=is_significant,
        recommendation=get_recommendation(lift, confidence, config.significance_threshold),
    )


def _trait_kinds(neighbors: List[NeighborAd]) -> Dict[str, type]:
    """Trait key -> type of the first value seen, in first-seen order."""
    kinds: Dict[str, type] = {}
    for neighbor in neighbors:
        for key, value in neighbor.orb.traits.items():
            if key not in kinds and value is not None:
                kinds[key] = bool if isinstance(value, bool) else type(value)
    return kinds


def analyze_all_trait_effects(
    neighbors: List[NeighborAd],
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
) -> List[TraitEffect]:
    """Effects for every trait present in any neighbor.

    Booleans are analyzed as presence, strings once per distinct value,
    numbers as raw presence.
    """
    effects: List[TraitEffect] = []
    for key, kind in _trait_kinds(neighbors).items():
        if kind is bool:
            effects.append(analyze_trait_effect(neighbors, key, True, config, safety_config))
        elif kind is str:
            seen: List[str] = []
            for n in neighbors:
                value = n.orb.traits.get(key)
                if isinstance(value, str) and value not in seen:
                    seen.append(value)
            for value in seen:
                effects.append(analyze_trait_effect(neighbors, key, value, config, safety_config))
        else:
            effects.append(analyze_trait_effect(neighbors, key, None, config, safety_config))
    return effects


def analyze_query_trait_effects(
    query: AdOrb,
    neighbors: List[NeighborAd],
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
) -> List[TraitEffect]:
    """Effects for exactly the traits (and values) the query ad carries."""
    return [
        analyze_trait_effect(neighbors, key, value, config, safety_config)
        for key, value in query.traits.items()
        if value is not None and value != ""
    ]


# =============================================================================
# Full analysis
# =============================================================================

def perform_contrastive_analysis(
    query: AdOrb,
    neighbors: List[NeighborAd],
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
    scope: str = SCOPE_ALL,
) -> ContrastiveAnalysis:
    """
    Run trait-effect analysis and bucket the results.

    Args:
        query: The ad being analyzed
        neighbors: Its retrieved neighbors
        config: RAG thresholds
        safety_config: Group-size guard and lift clamp
        scope: "all" analyzes every trait seen in the neighbors; "query"
            only the query's own traits (used by prediction)

    Returns:
        ContrastiveAnalysis with top positive/negative (significant only)
        and low-confidence effects
    """
    if scope == SCOPE_QUERY:
        effects = analyze_query_trait_effects(query, neighbors, config, safety_config)
    elif scope == SCOPE_ALL:
        effects = analyze_all_trait_effects(neighbors, config, safety_config)
    else:
        raise ValueError(f"Unknown contrastive scope: {scope}")

    by_lift = sorted(effects, key=lambda e: abs(e.lift), reverse=True)
    top_positive = [e for e in by_lift if e.lift > 0 and e.is_significant][:TOP_EFFECTS]
    top_negative = [e for e in by_lift if e.lift < 0 and e.is_significant][:TOP_EFFECTS]
    low_confidence = [e for e in effects if e.confidence < LOW_CONFIDENCE_THRESHOLD]

    avg_similarity = (
        sum(n.hybrid_similarity for n in neighbors) / len(neighbors) if neighbors else 0.0
    )

    logger.debug(
        f"Contrastive analysis for {query.id}: {len(effects)} effects, "
        f"{len(top_positive)} positive, {len(top_negative)} negative"
    )

    return ContrastiveAnalysis(
        trait_effects=effects,
        top_positive=top_positive,
        top_negative=top_negative,
        low_confidence=low_confidence,
        total_neighbors=len(neighbors),
        avg_similarity=avg_similarity,
    )


def get_top_impactful_traits(analysis: ContrastiveAnalysis, n: int = 5) -> List[TraitEffect]:
    significant = [e for e in analysis.trait_effects if e.is_significant]
    return sorted(significant, key=lambda e: abs(e.lift), reverse=True)[:n]


def get_traits_needing_more_data(
    analysis: ContrastiveAnalysis, min_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD
) -> List[TraitEffect]:
    return [e for e in analysis.trait_effects if e.confidence < min_confidence_threshold]
