"""
Marketplace matching and explanations.

Scores catalog datasets against a prediction's data needs, estimates the
confidence each could add, and turns the best matches into suggestions.
"""

import math
import logging
from typing import List, Optional

from orbcast.core.config import DEFAULT_MARKETPLACE_CONFIG, MarketplaceConfig
from orbcast.core.models import (
    AccessTier,
    DataNeed,
    GapAnalysis,
    MarketplaceDataset,
    MarketplaceMatch,
    MarketplaceSuggestion,
    NeedDimension,
    Severity,
    SuggestionActions,
)

from .marketplace_datasets import dataset_covers_platform, get_all_datasets

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {Severity.HIGH: 1.5, Severity.MEDIUM: 1.0, Severity.LOW: 0.5}

FULL_COVERAGE = 100.0
PARTIAL_TRAIT_COVERAGE = 60.0

# Match score weights
COVERAGE_WEIGHT = 0.6
FRESHNESS_WEIGHT = 0.2
CONFIDENCE_WEIGHT = 0.2

DEFAULT_DATASET_GAIN = 20.0
HIGHLY_RELEVANT_MATCH = 70


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


# =============================================================================
# Scoring
# =============================================================================

def calculate_coverage_for_need(dataset: MarketplaceDataset, need: DataNeed) -> float:
    """
    How well one dataset covers one need (0, 60 or 100).

    Trait needs match on the key before any "=value": exact name is full
    coverage, a case-insensitive substring either way is partial.
    """
    if need.dimension == NeedDimension.PLATFORM:
        return FULL_COVERAGE if dataset_covers_platform(dataset, need.value) else 0.0

    if need.dimension == NeedDimension.TRAIT:
        trait = need.value.split("=")[0].lower()
        covered = [t.lower() for t in dataset.covers.traits]
        if trait in covered:
            return FULL_COVERAGE
        if any(trait in t or t in trait for t in covered):
            return PARTIAL_TRAIT_COVERAGE
        return 0.0

    if need.dimension == NeedDimension.FORMAT:
        return FULL_COVERAGE if need.value in dataset.covers.formats else 0.0
    if need.dimension == NeedDimension.OBJECTIVE:
        return FULL_COVERAGE if need.value in dataset.covers.objectives else 0.0
    if need.dimension == NeedDimension.AUDIENCE:
        return FULL_COVERAGE if need.value in dataset.covers.audiences else 0.0
    return 0.0


def calculate_overall_coverage(dataset: MarketplaceDataset, needs: List[DataNeed]) -> float:
    """Severity-weighted mean coverage across needs (high 1.5, medium 1.0, low 0.5)."""
    if not needs:
        return 0.0

    weighted = 0.0
    total_weight = 0.0
    for need in needs:
        weight = SEVERITY_WEIGHTS[need.severity]
        weighted += calculate_coverage_for_need(dataset, need) * weight
        total_weight += weight
    return weighted / total_weight if total_weight > 0 else 0.0


def calculate_match_score(coverage_score: float, freshness_score: float, confidence_score: float) -> float:
    return (
        coverage_score * COVERAGE_WEIGHT
        + freshness_score * FRESHNESS_WEIGHT
        + confidence_score * CONFIDENCE_WEIGHT
    )


def estimate_dataset_confidence_gain(
    dataset: MarketplaceDataset, addressed_needs: List[DataNeed], coverage_score: float
) -> float:
    """
    Expected confidence gain from adding a dataset.

    Base gain scaled by coverage, a log10 sample-count factor and the
    dataset's own confidence; never more than the summed impact of the needs
    it addresses.
    """
    base_gain = dataset.avg_confidence_gain or DEFAULT_DATASET_GAIN
    sample_multiplier = (
        min(1.0, math.log10(dataset.sample_count) / 4) if dataset.sample_count > 0 else 0.0
    )
    estimated = (
        base_gain
        * (coverage_score / 100)
        * sample_multiplier
        * (dataset.confidence_score / 100)
    )
    max_possible = sum(n.confidence_impact for n in addressed_needs)
    return float(round(min(estimated, max_possible)))


def generate_match_explanation(
    dataset: MarketplaceDataset, addressed_needs: List[DataNeed], confidence_gain: float
) -> str:
    high = sum(1 for n in addressed_needs if n.severity == Severity.HIGH)
    if high > 0:
        return (
            f"Addresses {_plural(high, 'critical gap')} with {dataset.sample_count:,} data points, "
            f"potentially improving confidence by {confidence_gain:.0f}%."
        )
    return (
        f"Covers {_plural(len(addressed_needs), 'data gap')} with {dataset.sample_count:,} samples. "
        f"Estimated confidence gain: +{confidence_gain:.0f}%."
    )


# =============================================================================
# Matching
# =============================================================================

def match_data_needs(
    needs: List[DataNeed], config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG
) -> List[MarketplaceMatch]:
    """
    Rank public datasets against a set of needs.

    Args:
        needs: Detected data needs
        config: Marketplace settings (enabled, min match score, cap)

    Returns:
        Matches sorted by match score, at most ``max_suggestions_to_show``
    """
    if not config.enabled or not needs:
        return []

    matches: List[MarketplaceMatch] = []
    for dataset in get_all_datasets(public_only=True):
        coverage = calculate_overall_coverage(dataset, needs)
        if coverage == 0:
            continue

        match_score = calculate_match_score(coverage, dataset.freshness_score, dataset.confidence_score)
        if match_score < config.min_match_score_to_show:
            continue

        addressed = [n for n in needs if calculate_coverage_for_need(dataset, n) > 0]
        gain = estimate_dataset_confidence_gain(dataset, addressed, coverage)

        matches.append(MarketplaceMatch(
            dataset=dataset,
            coverage_score=coverage,
            freshness_score=dataset.freshness_score,
            confidence_score=dataset.confidence_score,
            match_score=match_score,
            addressed_needs=addressed,
            estimated_confidence_gain=gain,
            explanation=generate_match_explanation(dataset, addressed, gain),
        ))

    matches.sort(key=lambda m: m.match_score, reverse=True)
    logger.debug(f"Matched {len(matches)} datasets against {len(needs)} needs")
    return matches[:config.max_suggestions_to_show]


def generate_suggestions(
    matches: List[MarketplaceMatch], current_confidence: float
) -> List[MarketplaceSuggestion]:
    """User-facing suggestions, one per match, highest priority first."""
    suggestions = []
    for index, match in enumerate(matches):
        dataset = match.dataset

        if index == 0:
            headline = "Best match to improve your prediction"
        elif match.match_score >= HIGHLY_RELEVANT_MATCH:
            headline = "Highly relevant dataset available"
        else:
            headline = "Additional data available"

        if match.addressed_needs:
            reason = match.addressed_needs[0].reason
        else:
            reason = f"Adds {dataset.sample_count:,} relevant data points"

        gain = match.estimated_confidence_gain
        new_confidence = min(100.0, current_confidence + gain)

        suggestions.append(MarketplaceSuggestion(
            match=match,
            headline=headline,
            reason=reason,
            impact=(
                f"Estimated confidence: {current_confidence:.0f}% → "
                f"{new_confidence:.0f}% (+{gain:.0f}%)"
            ),
            actions=SuggestionActions(
                preview_impact=True,
                add_dataset=dataset.access_tier == AccessTier.FREE,
                learn_more=True,
            ),
            priority=len(matches) - index,
        ))
    return suggestions


def get_best_match(
    needs: List[DataNeed], config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG
) -> Optional[MarketplaceMatch]:
    matches = match_data_needs(needs, config)
    return matches[0] if matches else None


def has_available_datasets(
    needs: List[DataNeed], config: MarketplaceConfig = DEFAULT_MARKETPLACE_CONFIG
) -> bool:
    return bool(match_data_needs(needs, config))


def get_total_potential_gain(matches: List[MarketplaceMatch]) -> float:
    """Sum of gains, largest first, each additional dataset counting half the previous."""
    total = 0.0
    multiplier = 1.0
    for gain in sorted((m.estimated_confidence_gain for m in matches), reverse=True):
        total += gain * multiplier
        multiplier *= 0.5
    return float(round(total))


# =============================================================================
# Explanations
# =============================================================================

def explain_confidence_limit(analysis: GapAnalysis) -> str:
    if analysis.high_severity_count > 0:
        return "Your prediction confidence is significantly limited due to data gaps."
    if analysis.medium_severity_count >= 2:
        return "Your prediction has moderate uncertainty due to limited data."
    if analysis.needs:
        return "Your prediction could be improved with additional data."
    return "Your prediction has sufficient data coverage."


def explain_data_need(need: DataNeed) -> str:
    """One-sentence description of a need, specific to its dimension."""
    if need.dimension == NeedDimension.PLATFORM:
        return (
            f"Missing data for {need.value}: Only {need.current_samples} similar ads found "
            f"on this platform (recommended: {need.required_samples}+)."
        )

    if need.dimension == NeedDimension.TRAIT:
        if need.value == "similar_ads":
            return (
                f"Low neighbor count: Only {need.current_samples} similar ads found overall. "
                "More data would improve prediction reliability."
            )
        if need.value == "similarity_quality":
            avg = need.context.get("avg_similarity", 0.0)
            return (
                "Low similarity: The most similar ads aren't very close matches "
                f"({avg:.0f}% average)."
            )
        if need.value == "outcome_variance":
            variance = need.context.get("variance", 0.0)
            return (
                f"High variance: Similar ads have inconsistent outcomes (std dev: {variance:.0f}), "
                "making predictions less reliable."
            )
        trait = need.value.split("=")[0]
        trait_confidence = need.context.get("trait_confidence", 0.0)
        return (
            f'Limited evidence for "{trait}": Only {need.current_samples} examples with this '
            f"trait (confidence: {trait_confidence:.0f}%)."
        )

    if need.dimension == NeedDimension.FORMAT:
        return f'Rare format "{need.value}": Only {need.current_samples} similar ads use this format.'
    if need.dimension == NeedDimension.OBJECTIVE:
        return f"Limited data for {need.value} objective: Only {need.current_samples} similar campaigns."
    if need.dimension == NeedDimension.AUDIENCE:
        return (
            f"Sparse audience data for {need.value}: Only {need.current_samples} "
            "similar targeting patterns."
        )
    return need.reason


def summarize_gaps(analysis: GapAnalysis) -> str:
    parts = []
    if analysis.high_severity_count:
        parts.append(_plural(analysis.high_severity_count, "critical gap"))
    if analysis.medium_severity_count:
        parts.append(_plural(analysis.medium_severity_count, "moderate gap"))
    if analysis.low_severity_count:
        parts.append(_plural(analysis.low_severity_count, "minor gap"))

    if not parts:
        return "No significant data gaps detected."
    return (
        f"Found {', '.join(parts)}. "
        f"Maximum potential confidence gain: +{analysis.max_confidence_gain:.0f}%."
    )


def explain_match_reason(match: MarketplaceMatch) -> str:
    """Why a dataset was matched: what it covers plus quality signals."""
    dataset = match.dataset
    parts = []

    platforms = [n.value for n in match.addressed_needs if n.dimension == NeedDimension.PLATFORM]
    traits = [n for n in match.addressed_needs if n.dimension == NeedDimension.TRAIT]

    if platforms:
        parts.append(f"Contains {dataset.sample_count:,} data points for {', '.join(platforms)}")
    if traits:
        parts.append(f"Covers {_plural(len(traits), 'trait')} you're missing data for")
    if dataset.freshness_score >= 90:
        parts.append("Recently updated with fresh data")
    if dataset.confidence_score >= 90:
        parts.append("High confidence data from verified sources")
    if dataset.usage_count > 100:
        parts.append(f"Used by {dataset.usage_count}+ creators")

    if not parts:
        parts.append(f"Match score: {match.match_score:.0f}%")
    return ". ".join(parts) + "."


def explain_confidence_gain(current_confidence: float, estimated_gain: float) -> str:
    new_confidence = min(100.0, current_confidence + estimated_gain)
    if estimated_gain >= 30:
        return (
            f"Could boost your prediction confidence from {current_confidence:.0f}% to "
            f"approximately {new_confidence:.0f}% (+{estimated_gain:.0f}%)."
        )
    if estimated_gain >= 15:
        return (
            f"Estimated confidence improvement: {current_confidence:.0f}% → "
            f"{new_confidence:.0f}% (+{estimated_gain:.0f}%)."
        )
    return f"May improve confidence by approximately {estimated_gain:.0f}%."
