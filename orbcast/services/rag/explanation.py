"""
Evidence-based explanations.

Turns neighbor statistics and contrastive trait effects into plain text:
"Among 18 similar ads, those with subtitles performed 11 points better."
Also builds the fixed four-section explanation returned by the unified
pipeline.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from orbcast.core.config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from orbcast.core.models import (
    AdOrb,
    ConfidenceLevel,
    ConfidenceSection,
    ContrastiveAnalysis,
    ContrastSection,
    DataGap,
    DataGapSection,
    ExperimentSuggestion,
    Explanation,
    FourSectionExplanation,
    NeighborAd,
    PredictionBounds,
    SimilarAdsSection,
    TraitEffect,
    TraitImpact,
)

from .ad_orb import get_orb_success_score
from .contrastive import LOW_CONFIDENCE_THRESHOLD, get_traits_needing_more_data

logger = logging.getLogger(__name__)

# Lifts smaller than this are described as minimal
MINIMAL_LIFT = 3

# Neighbor count below which reliability is called out
THIN_NEIGHBOR_COUNT = 5

# Neighbor count the four-section explanation treats as "enough examples"
WELL_SUPPORTED_COUNT = 10

NEIGHBOR_GAP_IMPACT = 15
TRAIT_GAP_IMPACT = 10


# =============================================================================
# Single-item explanations
# =============================================================================

def explain_trait_effect(effect: TraitEffect) -> str:
    """One sentence describing a trait's lift among similar ads."""
    total = effect.n_with + effect.n_without

    if effect.confidence < LOW_CONFIDENCE_THRESHOLD:
        return (
            f"Not enough data to determine impact of {effect.label}. "
            f"({effect.n_with} with, {effect.n_without} without)"
        )

    if abs(effect.lift) < MINIMAL_LIFT:
        return f"{effect.label} shows minimal impact among {total} similar ads."

    direction = "better" if effect.lift > 0 else "worse"
    abs_lift = abs(round(effect.lift))
    magnitude = f"{abs(round(effect.lift_percent))}%" if abs_lift > 10 else f"{abs_lift} points"
    return f"Among {total} similar ads, those with {effect.label} performed {magnitude} {direction}."


def explain_neighbors(neighbors: List[NeighborAd]) -> str:
    if not neighbors:
        return "No similar ads found in the database."

    scores = [s for s in (get_orb_success_score(n.orb) for n in neighbors) if s is not None]
    avg_similarity = round(sum(n.hybrid_similarity for n in neighbors) / len(neighbors) * 100)

    text = f"Found {len(neighbors)} similar ads with average {avg_similarity}% similarity."
    if scores:
        text += f" Their average success score was {round(sum(scores) / len(scores))}."
    top_score = get_orb_success_score(neighbors[0].orb)
    if top_score is not None:
        text += f" Most similar ad scored {round(top_score)}."
    return text


def explain_low_confidence(neighbors: List[NeighborAd], low_confidence: List[TraitEffect]) -> List[str]:
    notes = []
    if len(neighbors) < THIN_NEIGHBOR_COUNT:
        notes.append(
            f"Only {len(neighbors)} similar ads found. Prediction reliability is limited."
        )
    if low_confidence:
        names = ", ".join(e.trait for e in low_confidence[:3])
        notes.append(f"Limited data for: {names}. Consider A/B testing.")
    return notes


# =============================================================================
# Suggestions + recommendations
# =============================================================================

def generate_experiment_suggestions(
    query: AdOrb, low_confidence: List[TraitEffect]
) -> List[ExperimentSuggestion]:
    """Up to three tests for traits the data cannot yet judge."""
    suggestions = []
    for effect in low_confidence[:3]:
        current = query.traits.get(effect.trait)
        if isinstance(current, bool):
            suggested = not current
            reason = f"Not enough data to determine impact of {effect.trait}. Test both versions."
        else:
            suggested = "alternative"
            reason = f"Limited data for {effect.trait}={current}. Consider testing other options."

        suggestions.append(ExperimentSuggestion(
            trait=effect.trait,
            current_value=current,
            suggested_value=suggested,
            reason=reason,
            expected_info_gain=max(0.0, 100 - effect.confidence),
        ))
    return suggestions


def generate_recommendations(analysis: ContrastiveAnalysis) -> List[str]:
    """Use / avoid / test advice ranked by evidence strength."""
    recommendations = []

    for effect in analysis.top_positive[:3]:
        if effect.lift > 5 and effect.confidence >= 50:
            recommendations.append(
                f"Consider using {effect.label} - associated with "
                f"{round(effect.lift)} point higher success."
            )

    for effect in analysis.top_negative[:2]:
        if effect.lift < -5 and effect.confidence >= 50:
            recommendations.append(
                f"Caution with {effect.label} - associated with "
                f"{round(abs(effect.lift))} point lower success."
            )

    if analysis.low_confidence:
        traits = ", ".join(e.trait for e in analysis.low_confidence[:2])
        recommendations.append(f"A/B test recommended for: {traits} - not enough evidence yet.")

    if analysis.total_neighbors < THIN_NEIGHBOR_COUNT:
        recommendations.append(
            f"Low sample size ({analysis.total_neighbors} similar ads). "
            f"Results will improve as you add more ads."
        )

    return recommendations


def generate_summary(prediction: float, confidence: float, neighbor_count: int) -> str:
    if neighbor_count < 3:
        return (
            f"Prediction based on limited data ({neighbor_count} similar ads). "
            f"Treat as rough estimate."
        )
    if confidence >= 70:
        return (
            f"Predicted {round(prediction)}% success with high confidence "
            f"based on {neighbor_count} similar ads."
        )
    if confidence >= 40:
        return (
            f"Predicted {round(prediction)}% success with moderate confidence. "
            f"More data would improve accuracy."
        )
    return f"Predicted {round(prediction)}% success, but confidence is low. Consider A/B testing."


def generate_explanation(
    prediction: float,
    confidence: float,
    neighbors: List[NeighborAd],
    analysis: ContrastiveAnalysis,
    query: Optional[AdOrb] = None,
) -> Explanation:
    """Full explanation: summary, evidence, trait lines, caveats and next steps."""
    trait_lines = [explain_trait_effect(e) for e in analysis.top_positive[:3]]
    trait_lines += [explain_trait_effect(e) for e in analysis.top_negative[:2]]

    subject = query if query is not None else (neighbors[0].orb if neighbors else None)
    experiments = (
        generate_experiment_suggestions(subject, analysis.low_confidence) if subject else []
    )

    return Explanation(
        summary=generate_summary(prediction, confidence, len(neighbors)),
        neighbor_explanation=explain_neighbors(neighbors),
        trait_explanations=trait_lines,
        confidence_explanation=" ".join(explain_low_confidence(neighbors, analysis.low_confidence)),
        recommendations=generate_recommendations(analysis),
        experiment_suggestions=experiments,
    )


def generate_simple_explanation(neighbors: List[NeighborAd], analysis: ContrastiveAnalysis) -> str:
    parts = []
    if neighbors:
        parts.append(f"Based on {len(neighbors)} similar ads.")
    if analysis.top_positive:
        parts.append(explain_trait_effect(analysis.top_positive[0]))
    if analysis.top_negative:
        parts.append(explain_trait_effect(analysis.top_negative[0]))
    return " ".join(parts)


# =============================================================================
# Four-section explanation
# =============================================================================

def get_confidence_level(confidence: float, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> ConfidenceLevel:
    if confidence >= config.confidence_threshold:
        return ConfidenceLevel.HIGH
    if confidence >= config.confidence_threshold * 0.6:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _impacts(effects: List[TraitEffect]) -> List[TraitImpact]:
    return [
        TraitImpact(trait=e.trait, lift=round(e.lift, 1), confidence=round(e.confidence))
        for e in effects[:3]
    ]


def build_similar_ads_section(neighbors: List[NeighborAd]) -> SimilarAdsSection:
    scores = [s for s in (get_orb_success_score(n.orb) for n in neighbors) if s is not None]
    avg = sum(scores) / len(scores) if scores else 50.0

    if neighbors:
        summary = f"Based on {len(neighbors)} similar ads, the average success score was {round(avg)}%."
    else:
        summary = "No similar ads found for comparison."

    return SimilarAdsSection(
        summary=summary,
        count=len(neighbors),
        avg_performance=round(avg),
        performance_range=PredictionBounds(
            lower=min(scores) if scores else 0.0,
            upper=max(scores) if scores else 0.0,
        ),
    )


def build_contrast_section(analysis: Optional[ContrastiveAnalysis]) -> ContrastSection:
    positive = _impacts(analysis.top_positive) if analysis else []
    negative = _impacts(analysis.top_negative) if analysis else []
    net_impact = sum(t.lift for t in positive) + sum(t.lift for t in negative)

    summary = "No trait differences analyzed."
    if positive or negative:
        parts = []
        if positive:
            parts.append(f"{len(positive)} traits working in your favor")
        if negative:
            parts.append(f"{len(negative)} traits that may hurt performance")
        sign = "+" if net_impact > 0 else ""
        summary = f"Your ad has {' and '.join(parts)}. Net impact: {sign}{round(net_impact)}%."

    return ContrastSection(
        summary=summary,
        positive=positive,
        negative=negative,
        net_impact=round(net_impact, 1),
    )


def build_confidence_section(
    neighbors: List[NeighborAd],
    analysis: Optional[ContrastiveAnalysis],
    confidence: float,
    level: ConfidenceLevel,
) -> ConfidenceSection:
    reasons = []
    if len(neighbors) >= WELL_SUPPORTED_COUNT:
        reasons.append(f"{len(neighbors)} similar examples found")
    elif neighbors:
        reasons.append(f"Only {len(neighbors)} similar examples (need more data)")
    else:
        reasons.append("No similar examples found")

    if analysis and analysis.low_confidence:
        reasons.append(f"{len(analysis.low_confidence)} traits need more data")

    return ConfidenceSection(level=level, percentage=round(confidence), reasons=reasons)


def build_data_gap_section(
    neighbors: List[NeighborAd], analysis: Optional[ContrastiveAnalysis]
) -> DataGapSection:
    gaps: List[DataGap] = []
    potential_gain = 0.0

    if len(neighbors) < WELL_SUPPORTED_COUNT:
        gaps.append(DataGap(
            dimension="similar_ads",
            description=f"Only {len(neighbors)} similar ads found",
            current_samples=len(neighbors),
            required_samples=WELL_SUPPORTED_COUNT,
        ))
        potential_gain += NEIGHBOR_GAP_IMPACT

    if analysis:
        for effect in get_traits_needing_more_data(analysis)[:3]:
            gaps.append(DataGap(
                dimension=effect.trait,
                description=f'Low confidence for "{effect.trait}" effect',
                current_samples=effect.n_with + effect.n_without,
                required_samples=WELL_SUPPORTED_COUNT,
            ))
            potential_gain += TRAIT_GAP_IMPACT

    if gaps:
        summary = (
            f"Adding {len(gaps)} data points could improve confidence "
            f"by up to {round(potential_gain)}%."
        )
    else:
        summary = "More ads with results will improve prediction accuracy."

    return DataGapSection(gaps=gaps, potential_gain=potential_gain, summary=summary)


def build_four_section_explanation(
    neighbors: List[NeighborAd],
    analysis: Optional[ContrastiveAnalysis],
    confidence: float,
    level: ConfidenceLevel,
    config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
) -> FourSectionExplanation:
    """
    Similar ads, contrast, confidence, and (only when confidence is not high
    and gap suggestions are enabled) data gaps.
    """
    data_gaps = None
    if level != ConfidenceLevel.HIGH and config.include_data_gap_suggestions:
        data_gaps = build_data_gap_section(neighbors, analysis)

    return FourSectionExplanation(
        similar_ads=build_similar_ads_section(neighbors),
        contrast=build_contrast_section(analysis),
        confidence=build_confidence_section(neighbors, analysis, confidence, level),
        data_gaps=data_gaps,
    )


def build_pipeline_recommendations(explanation: FourSectionExplanation) -> List[str]:
    recommendations = []
    if explanation.contrast.positive:
        names = ", ".join(t.trait for t in explanation.contrast.positive)
        recommendations.append(f"Keep using: {names}")
    if explanation.contrast.negative:
        names = ", ".join(t.trait for t in explanation.contrast.negative)
        recommendations.append(f"Consider changing: {names}")
    if explanation.confidence.level == ConfidenceLevel.LOW:
        recommendations.append("Add more ads with results to improve predictions")
    return recommendations
