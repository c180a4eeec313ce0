"""
Shared contrast statistics.

Aggregated trait lifts that can be pooled across accounts without exposing
any single ad. Local lifts are blended with shared ones in proportion to how
confident the local estimate is; shared data never outweighs local data
unless explicitly allowed.
"""

import logging
from typing import Dict, List, Optional

from orbcast.core.config import DEFAULT_SHARED_STATS_CONFIG, SharedStatsConfig
from orbcast.core.models import BlendedLift, SharedContrastStat, StatContext, TraitEffect

logger = logging.getLogger(__name__)

MIN_CONFIDENCE_FOR_SHARING = 30


# =============================================================================
# Generation
# =============================================================================

def generate_shared_stat(
    effect: TraitEffect,
    context: Optional[StatContext] = None,
    config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG,
) -> Optional[SharedContrastStat]:
    """A shareable stat for one effect, or None when too small or too uncertain to share."""
    sample_size = effect.n_with + effect.n_without
    if sample_size < config.min_samples_for_sharing:
        return None
    if effect.confidence < MIN_CONFIDENCE_FOR_SHARING:
        return None

    return SharedContrastStat(
        trait=effect.trait,
        context=context or StatContext(),
        avg_lift=effect.lift,
        variance=abs(effect.avg_success_with - effect.avg_success_without) / 2,
        confidence=effect.confidence,
        sample_size=sample_size,
        min_contributors=1,
    )


def generate_shared_stats(
    effects: List[TraitEffect],
    context: Optional[StatContext] = None,
    config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG,
) -> List[SharedContrastStat]:
    stats = []
    for effect in effects:
        stat = generate_shared_stat(effect, context, config)
        if stat is not None:
            stats.append(stat)
    return stats


# =============================================================================
# Blending
# =============================================================================

def blend_with_shared_data(
    local_lift: float,
    shared_lift: float,
    local_confidence: float,
    allow_shared_only: bool = False,
    config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG,
) -> BlendedLift:
    """
    Blend a local lift with a shared one.

    alpha (local weight) is local_confidence / 100. The shared weight
    (1 - alpha) is capped at ``max_alpha_for_shared_data`` unless
    ``allow_shared_only`` is set.
    """
    alpha = min(1.0, max(0.0, local_confidence / 100))

    max_shared_weight = config.max_alpha_for_shared_data
    if (1 - alpha) > max_shared_weight and not allow_shared_only:
        alpha = 1 - max_shared_weight

    return BlendedLift(
        local_lift=local_lift,
        shared_lift=shared_lift,
        blended_lift=alpha * local_lift + (1 - alpha) * shared_lift,
        alpha=alpha,
        using_shared_data=alpha < 1,
    )


def blend_trait_effect(
    effect: TraitEffect,
    shared_stat: Optional[SharedContrastStat],
    config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG,
) -> BlendedLift:
    """Blend one effect with its shared stat; local-only when the stat is missing or under-contributed."""
    if shared_stat is None:
        return BlendedLift(
            trait=effect.trait,
            local_lift=effect.lift,
            shared_lift=0.0,
            blended_lift=effect.lift,
            alpha=1.0,
            using_shared_data=False,
        )

    if not can_use_shared_stat(shared_stat, config):
        return BlendedLift(
            trait=effect.trait,
            local_lift=effect.lift,
            shared_lift=shared_stat.avg_lift,
            blended_lift=effect.lift,
            alpha=1.0,
            using_shared_data=False,
        )

    blended = blend_with_shared_data(
        effect.lift, shared_stat.avg_lift, effect.confidence, config=config
    )
    return blended.model_copy(update={"trait": effect.trait})


def blend_all_trait_effects(
    effects: List[TraitEffect],
    shared_stats: List[SharedContrastStat],
    config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG,
) -> List[BlendedLift]:
    """Blend every effect with the shared stat for the same trait (case-insensitive)."""
    by_trait: Dict[str, SharedContrastStat] = {s.trait.lower(): s for s in shared_stats}
    return [
        blend_trait_effect(effect, by_trait.get(effect.trait.lower()), config)
        for effect in effects
    ]


# =============================================================================
# Aggregation
# =============================================================================

def aggregate_shared_stats(stats: List[SharedContrastStat]) -> Optional[SharedContrastStat]:
    """
    Merge stats for one trait into a single sample-size weighted stat.

    Lift, variance and confidence are averaged with sample size as weight;
    contributor counts are summed.
    """
    if not stats:
        return None

    total_samples = sum(s.sample_size for s in stats)
    if total_samples == 0:
        return None

    def weighted(attr: str) -> float:
        return sum(getattr(s, attr) * s.sample_size for s in stats) / total_samples

    aggregated = SharedContrastStat(
        trait=stats[0].trait,
        context=stats[0].context,
        avg_lift=weighted("avg_lift"),
        variance=weighted("variance"),
        confidence=weighted("confidence"),
        sample_size=total_samples,
        min_contributors=sum(s.min_contributors for s in stats),
    )
    logger.debug(
        f"Aggregated {len(stats)} stats for '{aggregated.trait}' "
        f"({total_samples} samples, {aggregated.min_contributors} contributors)"
    )
    return aggregated


# =============================================================================
# Privacy helpers
# =============================================================================

def can_contribute(local_samples: int, config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG) -> bool:
    return local_samples >= config.min_samples_for_sharing


def can_use_shared_stat(stat: SharedContrastStat, config: SharedStatsConfig = DEFAULT_SHARED_STATS_CONFIG) -> bool:
    return stat.min_contributors >= config.min_contributors_for_use


def anonymize_stat(stat: SharedContrastStat) -> SharedContrastStat:
    """Keep only the platform context and round values to reduce precision."""
    return stat.model_copy(update={
        "context": StatContext(platform=stat.context.platform),
        "avg_lift": round(stat.avg_lift, 1),
        "variance": round(stat.variance, 1),
        "confidence": float(round(stat.confidence)),
    })


def find_shared_stat(
    stats: List[SharedContrastStat], trait: str, platform: Optional[str] = None
) -> Optional[SharedContrastStat]:
    """Best stat for a trait: same platform first, then any platform."""
    name = trait.lower()
    candidates = [s for s in stats if s.trait.lower() == name]
    if platform:
        for stat in candidates:
            if stat.context.platform == platform:
                return stat
    return candidates[0] if candidates else None
