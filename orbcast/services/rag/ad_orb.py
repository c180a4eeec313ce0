"""AdOrb conversion: the flattened trait view used by retrieval math.

Converts upstream AdEntry records and lifecycle Orbs into AdOrbs (and back),
and provides the trait helpers contrastive analysis relies on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from orbcast.core.models import (
    FACET_GROUPS,
    AdEntry,
    AdOrb,
    AdOrbMetadata,
    AdResults,
    CanonicalTexts,
    CreatedFrom,
    EmbeddingSet,
    FacetSet,
    Orb,
    OrbDerived,
    OrbRaw,
    OrbResults,
    OrbSource,
    OrbSpec,
    OrbState,
    TraitValue,
    utcnow,
)
from orbcast.core.store import orb_has_results

logger = logging.getLogger(__name__)


# (trait name, extracted_content key, snake_case alias)
STRING_TRAIT_SOURCES = [
    ("hook", "hookType", "hook_type"),
    ("category", "contentCategory", "content_category"),
    ("editing", "editingStyle", "editing_style"),
    ("color", "colorScheme", "color_scheme"),
    ("music", "musicType", "music_type"),
    ("platform", "platform", "platform"),
    ("placement", "placement", "placement"),
    ("media_type", "mediaType", "media_type"),
    ("aspect_ratio", "aspectRatio", "aspect_ratio"),
    ("duration", "durationCategory", "duration_category"),
    ("pattern", "patternType", "pattern_type"),
    ("tone", "emotionalTone", "emotional_tone"),
    ("sentiment", "overallSentiment", "overall_sentiment"),
    ("hook_velocity", "hookVelocity", "hook_velocity"),
    ("cta_strength", "ctaStrength", "cta_strength"),
    ("cta_type", "cta", "cta_type"),
    ("talent", "talentType", "talent_type"),
    ("scene_velocity", "sceneVelocity", "scene_velocity"),
    ("composition", "shotComposition", "shot_composition"),
    ("bpm", "bpm", "bpm"),
    ("voiceover_style", "voiceoverStyle", "voiceover_style"),
    ("logo", "logoConsistency", "logo_consistency"),
    ("brand_color", "brandColorUsage", "brand_color_usage"),
    ("budget_tier", "budgetTier", "budget_tier"),
    ("objective", "objectiveType", "objective_type"),
    ("audience", "audienceType", "audience_type"),
    ("age_group", "targetAgeGroup", "target_age_group"),
    ("retention", "hookRetention", "hook_retention"),
]

# Always present, normalized to True/False
BOOLEAN_TRAIT_SOURCES = [
    ("ugc", "isUGCStyle", "is_ugc_style"),
    ("subtitles", "hasSubtitles", "has_subtitles"),
    ("voiceover", "hasVoiceover", "has_voiceover"),
    ("text_overlays", "hasTextOverlays", "has_text_overlays"),
    ("face_presence", "facePresence", "face_presence"),
]

# Set to True only when the source list is non-empty
LIST_FLAG_SOURCES = [
    ("social_proof", "socialProofElements", "social_proof_elements"),
    ("urgency", "urgencyTriggers", "urgency_triggers"),
    ("trust_signals", "trustSignals", "trust_signals"),
]

RESULT_FIELDS = {
    "success_score": ("successScore", "success_score"),
    "roas": ("roas", "roas"),
    "ctr": ("ctr", "ctr"),
    "conversions": ("conversions", "conversions"),
    "impressions": ("impressions", "impressions"),
    "clicks": ("clicks", "clicks"),
    "ad_spend": ("adSpend", "ad_spend"),
    "revenue": ("revenue", "revenue"),
}


def _get(data: Dict[str, Any], camel: str, snake: str) -> Any:
    value = data.get(camel)
    if value is None:
        value = data.get(snake)
    return value


# =============================================================================
# AdEntry -> AdOrb
# =============================================================================

def extract_traits(content: Dict[str, Any]) -> Dict[str, TraitValue]:
    """Flatten extracted creative attributes into predictive traits."""
    traits: Dict[str, TraitValue] = {}

    for trait, camel, snake in STRING_TRAIT_SOURCES:
        value = _get(content, camel, snake)
        if value not in (None, ""):
            traits[trait] = value

    for trait, camel, snake in BOOLEAN_TRAIT_SOURCES:
        traits[trait] = bool(_get(content, camel, snake))

    actors = _get(content, "numberOfActors", "number_of_actors")
    if actors is not None:
        traits["actors"] = actors

    curiosity = _get(content, "curiosityGap", "curiosity_gap")
    if curiosity is not None:
        traits["curiosity_gap"] = bool(curiosity)

    for trait, camel, snake in LIST_FLAG_SOURCES:
        if _get(content, camel, snake):
            traits[trait] = True

    for i, custom in enumerate(_get(content, "customTraits", "custom_traits") or []):
        traits[f"custom_{i}"] = custom

    return traits


def extract_results(data: Dict[str, Any], fallback_score: Optional[float] = None) -> AdResults:
    values = {
        name: _get(data, camel, snake)
        for name, (camel, snake) in RESULT_FIELDS.items()
    }
    if values["success_score"] is None:
        values["success_score"] = fallback_score
    return AdResults(**values)


def convert_to_ad_orb(ad: AdEntry) -> AdOrb:
    """Convert an AdEntry into its canonical AdOrb. Never mutates the entry."""
    content = ad.extracted_content or {}
    traits = extract_traits(content)

    results = None
    if ad.has_results and (ad.extracted_results or ad.success_score is not None):
        results = extract_results(ad.extracted_results or {}, ad.success_score)

    return AdOrb(
        id=ad.id,
        traits=traits,
        results=results,
        metadata=AdOrbMetadata(
            platform=content.get("platform"),
            objective=_get(content, "objectiveType", "objective_type"),
            created_at=ad.created_at,
            updated_at=ad.updated_at,
            has_results=ad.has_results,
        ),
    )


def convert_many_to_ad_orbs(ads: List[AdEntry]) -> List[AdOrb]:
    return [convert_to_ad_orb(ad) for ad in ads]


# =============================================================================
# Orb <-> AdOrb
# =============================================================================

def convert_orb_to_ad_orb(orb: Orb) -> AdOrb:
    """Flatten a lifecycle Orb for retrieval queries.

    Each non-empty facet group becomes a primary trait (first value) plus one
    boolean trait per value (``group_value``).
    """
    traits: Dict[str, TraitValue] = {"platform": orb.spec.platform}
    if orb.spec.objective:
        traits["objective"] = orb.spec.objective

    for group in FACET_GROUPS:
        values = orb.derived.facets.group(group)
        if values:
            traits[group] = values[0]
            for value in values:
                traits[f"{group}_{value}"] = True

    results = None
    if orb.results:
        results = AdResults(**orb.results.model_dump(exclude={"fetched_at", "updated_at"}))

    creative = orb.derived.embeddings.creative
    canonical = orb.derived.canonical_texts.creative if orb.derived.canonical_texts else None

    return AdOrb(
        id=orb.id,
        traits=traits,
        results=results,
        metadata=AdOrbMetadata(
            platform=orb.spec.platform,
            objective=orb.spec.objective,
            created_at=orb.created_at,
            updated_at=orb.updated_at,
            has_results=orb.state == OrbState.OBSERVED and orb.results is not None,
        ),
        embedding=list(creative) if creative else None,
        canonical_text=canonical,
    )


def convert_ad_orb_to_orb(ad_orb: AdOrb) -> Orb:
    """Import an AdOrb as a lifecycle Orb (observed when it has results)."""
    now = utcnow()
    traits = ad_orb.traits
    facets = FacetSet()

    if traits.get("platform"):
        facets.platform_placement.append(str(traits["platform"]))
    if traits.get("hook"):
        facets.content_hook.append(str(traits["hook"]))
    if traits.get("ugc") is True:
        facets.talent_face.append("ugc_creator")
    if traits.get("subtitles") is True:
        facets.text_features.append("subtitles")
    if traits.get("voiceover") is True:
        facets.audio_voice.append("voiceover")
    if traits.get("text_overlays") is True:
        facets.text_features.append("text_overlay")

    results = None
    if ad_orb.results and ad_orb.results.success_score is not None:
        results = OrbResults(**ad_orb.results.model_dump(), fetched_at=now)

    state = OrbState.OBSERVED if ad_orb.metadata.has_results and results else OrbState.PUBLISHED
    platform = ad_orb.metadata.platform or str(traits.get("platform", "unknown"))

    return Orb(
        id=ad_orb.id,
        state=state,
        created_from=CreatedFrom.USER,
        raw=OrbRaw(source=OrbSource.MANUAL_UPLOAD, created_at=now),
        derived=OrbDerived(
            facets=facets,
            embeddings=EmbeddingSet(creative=list(ad_orb.embedding or [])),
            canonical_texts=(
                CanonicalTexts(creative=ad_orb.canonical_text)
                if ad_orb.canonical_text else None
            ),
            created_at=now,
        ),
        spec=OrbSpec(
            platform=platform,
            objective=ad_orb.metadata.objective or "conversions",
            facets=facets.model_copy(deep=True),
        ),
        results=results,
        created_at=ad_orb.metadata.created_at,
        updated_at=ad_orb.metadata.updated_at,
    )


def convert_many_orbs_to_ad_orbs(orbs: List[Orb]) -> List[AdOrb]:
    return [convert_orb_to_ad_orb(o) for o in orbs]


def convert_many_ad_orbs_to_orbs(ad_orbs: List[AdOrb]) -> List[Orb]:
    return [convert_ad_orb_to_orb(o) for o in ad_orbs]


# =============================================================================
# Trait helpers
# =============================================================================

def get_orb_trait_list(orb: AdOrb) -> List[str]:
    """Booleans as the bare key, everything else as key=value; falsy/empty skipped."""
    out = []
    for key, value in orb.traits.items():
        if value is False or value == "" or value is None:
            continue
        if isinstance(value, bool):
            out.append(key)
        else:
            out.append(f"{key}={value}")
    return out


def orb_has_trait(orb: AdOrb, trait_key: str, trait_value: Optional[TraitValue] = None) -> bool:
    """Without a value, checks the trait is present and truthy; otherwise checks equality."""
    if trait_key not in orb.traits:
        return False
    actual = orb.traits[trait_key]
    if trait_value is None:
        return bool(actual)
    # True == 1 in Python; keep booleans and numbers distinct
    if isinstance(actual, bool) != isinstance(trait_value, bool):
        return False
    return actual == trait_value


def get_orb_success_score(orb: AdOrb) -> Optional[float]:
    return orb.results.success_score if orb.results else None


def get_shared_traits(orb_a: AdOrb, orb_b: AdOrb) -> List[str]:
    traits_b = set(get_orb_trait_list(orb_b))
    return [t for t in get_orb_trait_list(orb_a) if t in traits_b]


def get_different_traits(orb_a: AdOrb, orb_b: AdOrb) -> Dict[str, List[str]]:
    """Traits only in A and only in B."""
    traits_a = get_orb_trait_list(orb_a)
    traits_b = get_orb_trait_list(orb_b)
    set_a, set_b = set(traits_a), set(traits_b)
    return {
        "only_in_a": [t for t in traits_a if t not in set_b],
        "only_in_b": [t for t in traits_b if t not in set_a],
    }


__all__ = [
    "convert_to_ad_orb",
    "convert_many_to_ad_orbs",
    "convert_orb_to_ad_orb",
    "convert_ad_orb_to_orb",
    "convert_many_orbs_to_ad_orbs",
    "convert_many_ad_orbs_to_orbs",
    "extract_traits",
    "extract_results",
    "get_orb_trait_list",
    "orb_has_trait",
    "orb_has_results",
    "get_orb_success_score",
    "get_shared_traits",
    "get_different_traits",
]
