"""
Suggested orbs.

When a prediction is uncertain, propose up to three variant orbs. Each keeps
the "proven core" (what already works among similar ads) and changes exactly
one experimental lever, chosen where the data is most uncertain. Suggestions
are created in the ``suggested`` state and are never published automatically.
"""

import math
import logging
from typing import Any, Dict, List, Optional

from orbcast.core.config import DEFAULT_FEATURE_FLAGS, EngineConfig, FeatureFlags
from orbcast.core.models import (
    FACET_GROUPS,
    ExperimentalLever,
    FacetSet,
    LearningIntent,
    NeighborAd,
    Orb,
    OrbSpec,
    OrbState,
    ProvenCore,
    SuggestedOrbScore,
    SuggestionDecision,
    SuggestionTrigger,
    TraitEffect,
)
from orbcast.core.store import OrbStore

from .ad_orb import convert_ad_orb_to_orb, convert_orb_to_ad_orb, get_orb_success_score
from .contrastive import SCOPE_ALL, perform_contrastive_analysis, get_traits_needing_more_data
from .embedding_service import EmbeddingService
from .neighbor_prediction import apply_contrastive_adjustment, compute_confidence, compute_weighted_prediction
from .orb_lifecycle import EXPERIMENTAL_LEVERS, create_suggested_orb, get_lever
from .retrieval import RetrievalService
from .safety import clamp_score

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_TRIGGER = 60
MIN_UNCERTAINTY_FOR_EXPERIMENT = 40
DEFAULT_POTENTIAL_IMPACT = 50
PROVEN_TRAIT_MIN_CONFIDENCE = 60
MAX_PROVEN_TRAITS = 5
TOP_NEIGHBORS_FOR_CORE = 5
SUGGESTION_K = 20
NEUTRAL_SCORE = 50.0


# =============================================================================
# Trigger detection
# =============================================================================

def should_generate_suggestions(
    orb: Orb,
    confidence: float,
    recent_suggestion_count: int,
    flags: FeatureFlags = DEFAULT_FEATURE_FLAGS,
) -> SuggestionDecision:
    """Decide whether an orb warrants suggested variants, and why."""
    if not flags.enable_suggested_orbs:
        return SuggestionDecision(should_generate=False, reason="Feature disabled")

    if recent_suggestion_count >= flags.max_suggestions_per_trigger:
        return SuggestionDecision(should_generate=False, reason="Max suggestions reached")

    if confidence >= flags.min_confidence_for_no_suggestion:
        return SuggestionDecision(should_generate=False, reason="Confidence already high")

    if confidence < LOW_CONFIDENCE_TRIGGER:
        return SuggestionDecision(
            should_generate=True,
            trigger=SuggestionTrigger.LOW_CONFIDENCE,
            reason=f"Confidence is {confidence:.0f}%",
        )

    if orb.state == OrbState.DRAFT and not orb.parent_orb_id:
        return SuggestionDecision(
            should_generate=True,
            trigger=SuggestionTrigger.NEW_ORB_ADDED,
            reason="New orb created",
        )

    return SuggestionDecision(should_generate=False, reason="No trigger conditions met")


# =============================================================================
# Proven core
# =============================================================================

def _neighbor_facets(neighbor: NeighborAd) -> FacetSet:
    """Facets implied by a neighbor's traits (including flattened group_value flags)."""
    facets = convert_ad_orb_to_orb(neighbor.orb).derived.facets
    for key, value in neighbor.orb.traits.items():
        if value is not True:
            continue
        for group in FACET_GROUPS:
            prefix = f"{group}_"
            if key.startswith(prefix):
                values = facets.group(group)
                facet = key[len(prefix):]
                if facet not in values:
                    values.append(facet)
    return facets


def extract_proven_core(neighbors: List[NeighborAd], trait_effects: List[TraitEffect]) -> ProvenCore:
    """
    What already works among the closest neighbors.

    Traits: significant positive effects with confidence >= 60 (top 5 by lift).
    Facets: values shared by at least half of the top 5 neighbors.
    """
    proven = sorted(
        (
            e for e in trait_effects
            if e.is_significant and e.lift > 0 and e.confidence >= PROVEN_TRAIT_MIN_CONFIDENCE
        ),
        key=lambda e: e.lift,
        reverse=True,
    )[:MAX_PROVEN_TRAITS]

    top = neighbors[:TOP_NEIGHBORS_FOR_CORE]
    if not top:
        return ProvenCore(traits=[e.trait for e in proven])

    scores = [get_orb_success_score(n.orb) for n in top]
    avg_score = sum(s if s is not None else NEUTRAL_SCORE for s in scores) / len(top)

    counts: Dict[str, Dict[str, int]] = {group: {} for group in FACET_GROUPS}
    for neighbor in top:
        facets = _neighbor_facets(neighbor)
        for group in FACET_GROUPS:
            for value in facets.group(group):
                counts[group][value] = counts[group].get(value, 0) + 1

    threshold = math.ceil(len(top) / 2)
    proven_facets = {}
    for group in FACET_GROUPS:
        common = [value for value, count in counts[group].items() if count >= threshold]
        if common:
            proven_facets[group] = common

    return ProvenCore(facets=proven_facets, traits=[e.trait for e in proven], avg_score=avg_score)


# =============================================================================
# Lever selection + spec generation
# =============================================================================

def select_experimental_lever(
    low_confidence_traits: List[TraitEffect], used_levers: List[str]
) -> Optional[ExperimentalLever]:
    """
    The unused lever with the best uncertainty/impact score.

    A lever's uncertainty and impact come from the low-confidence effect whose
    trait name contains the lever id; levers without one get moderate
    defaults. Levers below the uncertainty floor are skipped.
    """
    best: Optional[ExperimentalLever] = None
    best_score = -1.0

    for base in EXPERIMENTAL_LEVERS:
        if base.id in used_levers:
            continue

        needle = base.id.replace("_", "", 1)
        match = next((e for e in low_confidence_traits if needle in e.trait.lower()), None)

        uncertainty = 100 - match.confidence if match else MIN_UNCERTAINTY_FOR_EXPERIMENT
        impact = abs(match.lift) * 2 if match else DEFAULT_POTENTIAL_IMPACT
        if uncertainty < MIN_UNCERTAINTY_FOR_EXPERIMENT:
            continue

        lever = base.model_copy(update={
            "sample_size": match.n_with + match.n_without if match else 0,
            "uncertainty": uncertainty,
            "potential_impact": min(100.0, impact),
        })
        score = lever.uncertainty * 0.6 + lever.potential_impact * 0.4
        if score > best_score:
            best, best_score = lever, score

    return best


def generate_suggested_spec(parent_spec: OrbSpec, proven_core: ProvenCore, lever: ExperimentalLever) -> OrbSpec:
    """Parent spec with the proven facets plus the lever's variant value."""
    facets = FacetSet(**{group: list(values) for group, values in proven_core.facets.items()})

    values = facets.group(lever.facet_group)
    variant = lever.variant_value
    if isinstance(variant, str):
        if variant not in values:
            values.append(variant)
    elif variant is True:
        facet_name = lever.id.replace("_", "-")
        if facet_name not in values:
            values.append(facet_name)

    return parent_spec.model_copy(update={
        "facets": facets,
        "notes": f"Testing: {lever.name} ({lever.description})",
    })


def explain_suggestion(suggestion: Orb, proven_core: ProvenCore) -> Dict[str, Any]:
    """What is kept, what is tested and why, for display next to a suggestion."""
    if suggestion.learning_intent is None:
        return {
            "whats_proven": [],
            "whats_tested": "Unknown",
            "why_suggested": "No learning intent specified",
        }

    whats_proven = [f"{trait} correlates with higher performance" for trait in proven_core.traits]
    if proven_core.avg_score > 70:
        whats_proven.insert(0, f"Top performers average {round(proven_core.avg_score)}% success")

    lever = get_lever(suggestion.learning_intent.experiment_lever)
    whats_tested = (
        f"{lever.name}: {lever.description}" if lever
        else suggestion.learning_intent.experiment_lever
    )

    return {
        "whats_proven": whats_proven,
        "whats_tested": whats_tested,
        "why_suggested": suggestion.learning_intent.reason,
    }


def _format_trait_name(trait: str) -> str:
    return trait.replace("_", " ").title()


# =============================================================================
# Service
# =============================================================================

class SuggestionService:
    """Generates and scores suggested orbs against the orb store."""

    def __init__(
        self,
        store: OrbStore,
        embedding_service: Optional[EmbeddingService] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.embedding_service = embedding_service or EmbeddingService(safety_config=self.config.safety)
        self.retrieval = RetrievalService(
            store,
            self.embedding_service,
            rag_config=self.config.rag,
            safety_config=self.config.safety,
        )

    async def _neighbors_for(self, orb: Orb) -> tuple:
        query = convert_orb_to_ad_orb(orb)
        if not query.embedding:
            query = await self.embedding_service.generate_orb_embedding(query)
        neighbors = await self.retrieval.retrieve_similar_ads_with_results(query, SUGGESTION_K)
        return query, neighbors

    async def generate_suggested_orbs(self, parent_orb: Orb, max_suggestions: Optional[int] = None) -> List[Orb]:
        """
        Suggested variants of a parent orb, one experimental lever each.

        Args:
            parent_orb: Orb to build on (its id becomes each suggestion's parent)
            max_suggestions: Optional lower cap than the feature flag's

        Returns:
            Up to ``max_suggestions_per_trigger`` orbs in the suggested state;
            empty when there are too few similar ads
        """
        query, neighbors = await self._neighbors_for(parent_orb)
        if len(neighbors) < self.config.rag.min_neighbors:
            logger.info(
                f"Not generating suggestions for {parent_orb.id}: only {len(neighbors)} similar ads"
            )
            return []

        analysis = perform_contrastive_analysis(
            query, neighbors, self.config.rag, self.config.safety, scope=SCOPE_ALL
        )
        low_confidence = get_traits_needing_more_data(analysis)
        proven_core = extract_proven_core(neighbors, analysis.trait_effects)

        limit = self.config.flags.max_suggestions_per_trigger
        if max_suggestions is not None:
            limit = min(limit, max_suggestions)

        suggestions: List[Orb] = []
        used_levers: List[str] = []
        for _ in range(limit):
            lever = select_experimental_lever(low_confidence, used_levers)
            if lever is None:
                break
            used_levers.append(lever.id)

            suggestions.append(create_suggested_orb(
                spec=generate_suggested_spec(parent_orb.spec, proven_core, lever),
                parent_orb_id=parent_orb.id,
                learning_intent=LearningIntent(
                    experiment_lever=lever.id,
                    reason=(
                        f"Testing {lever.name}: {lever.description}. "
                        f"Current uncertainty: {lever.uncertainty:.0f}%"
                    ),
                    expected_info_gain=lever.potential_impact,
                    control_values={lever.facet_group: lever.control_value},
                    facet_group=lever.facet_group,
                ),
            ))

        logger.info(f"Generated {len(suggestions)} suggestions for {parent_orb.id}")
        return suggestions

    async def score_suggested_orb(self, orb: Orb) -> SuggestedOrbScore:
        """Predicted score for a suggested orb. Always returns; 50/0 on error."""
        try:
            query, neighbors = await self._neighbors_for(orb)

            if len(neighbors) < self.config.rag.min_neighbors:
                return SuggestedOrbScore(
                    predicted_score=NEUTRAL_SCORE,
                    confidence=float(min(len(neighbors) * 10, 30)),
                    neighbor_count=len(neighbors),
                    explanation="Insufficient data for proven patterns",
                    is_fallback=True,
                )

            analysis = perform_contrastive_analysis(
                query, neighbors, self.config.rag, self.config.safety, scope=SCOPE_ALL
            )
            base = compute_weighted_prediction(neighbors)
            adjusted = apply_contrastive_adjustment(base, analysis)
            avg_similarity = sum(n.hybrid_similarity for n in neighbors) / len(neighbors)

            supporting = [
                f"{_format_trait_name(e.trait)} adds +{round(e.lift)} points"
                for e in analysis.top_positive[:3]
            ]
            return SuggestedOrbScore(
                predicted_score=clamp_score(adjusted, self.config.safety),
                confidence=compute_confidence(neighbors, self.config.rag),
                neighbor_count=len(neighbors),
                avg_similarity=round(avg_similarity, 2),
                explanation=f"Based on {len(neighbors)} similar ads",
                supporting_traits=supporting,
            )
        except Exception as e:
            logger.error(f"Scoring suggested orb {orb.id} failed: {e}")
            return SuggestedOrbScore(
                predicted_score=NEUTRAL_SCORE,
                confidence=0.0,
                explanation="Unable to analyze similar ads",
                is_fallback=True,
            )
