"""Facet derivation: raw analysis JSON -> low-cardinality explanation labels.

Facets are for explanation and filtering only; prediction math runs on the
flattened traits in ad_orb.py. Keys are accepted in camelCase or snake_case
because upstream extractors emit both.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from orbcast.core.models import FACET_GROUPS, FacetSet

logger = logging.getLogger(__name__)


# =============================================================================
# Mapping tables
# =============================================================================

MEDIA_FORMAT_MAP = {
    "animated": "animated",
    "fast_cuts": "live_action",
    "cinematic": "live_action",
    "raw_authentic": "live_action",
    "minimal": "live_action",
    "dynamic": "live_action",
    "slow_motion": "live_action",
    "mixed_media": "mixed",
}

VISUAL_STYLE_MAP = {
    "vibrant": "bright_palette",
    "pastel": "bright_palette",
    "neon": "bright_palette",
    "muted": "muted_palette",
    "dark": "dark_palette",
    "monochrome": "monochrome",
    "warm": "warm_tones",
    "cool": "cool_tones",
    "natural": "natural",
}

SENTIMENT_MAP = {
    "inspiring": "inspirational",
    "urgent": "urgent",
    "calm": "calm",
    "exciting": "upbeat",
    "serious": "serious",
    "humorous": "playful",
}

HOOK_TYPE_MAP = {
    "curiosity": "curiosity",
    "shock": "shock",
    "question": "question",
    "story": "storytelling",
    "statistic": "data_driven",
    "controversy": "controversy",
    "transformation": "transformation",
    "before_after": "before_after",
    "problem_solution": "problem_solution",
    "testimonial": "social_proof",
    "unboxing": "unboxing",
    "challenge": "challenge",
}

CTA_TYPE_MAP = {
    "shop_now": "shop_now",
    "learn_more": "learn_more",
    "sign_up": "sign_up",
    "download": "download",
    "contact_us": "contact_us",
    "swipe_up": "swipe_up",
    "link_in_bio": "link_in_bio",
    "book_now": "book_now",
    "get_offer": "get_offer",
}


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """Return the first truthy value among keys, else None."""
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _lower(data: Dict[str, Any], *keys: str) -> str:
    value = _first(data, *keys)
    return str(value).lower() if value is not None else ""


def _add(values: List[str], value: str) -> None:
    if value and value not in values:
        values.append(value)


# =============================================================================
# Derivation
# =============================================================================

def derive_facets(analysis_json: Dict[str, Any]) -> FacetSet:
    """Map a raw analysis payload onto the ten facet groups.

    Args:
        analysis_json: Extracted creative attributes (camelCase or snake_case).

    Returns:
        FacetSet with de-duplicated values per group.
    """
    data = analysis_json or {}
    facets = create_empty_facet_set()

    # Platform & placement
    platform = _lower(data, "platform")
    _add(facets.platform_placement, platform)
    _add(facets.platform_placement, _lower(data, "placement"))
    aspect = _first(data, "aspectRatio", "aspect_ratio")
    if aspect:
        _add(facets.platform_placement, str(aspect))

    # Media format
    editing_style = _lower(data, "editingStyle", "editing_style")
    _add(facets.media_format, MEDIA_FORMAT_MAP.get(editing_style, ""))
    media_type = _lower(data, "mediaType", "media_type")
    if media_type == "video":
        _add(facets.media_format, "video")
    elif media_type == "photo":
        _add(facets.media_format, "static")
    if editing_style == "animated" or _first(data, "isAnimated", "has_animation"):
        _add(facets.media_format, "animated")

    # Visual style
    color_scheme = _lower(data, "colorScheme", "color_scheme")
    _add(facets.visual_style, VISUAL_STYLE_MAP.get(color_scheme, ""))

    # Audio & voice
    if _first(data, "hasVoiceover", "has_voiceover", "voiceover"):
        _add(facets.audio_voice, "voiceover")
    music_type = _lower(data, "musicType", "music_type")
    if music_type and music_type not in ("no_music", "voiceover_only"):
        _add(facets.audio_voice, "music")
        if music_type in ("upbeat", "energetic"):
            _add(facets.audio_voice, "energetic")

    # Content & hook
    hook_type = _lower(data, "hookType", "hook_type")
    _add(facets.content_hook, HOOK_TYPE_MAP.get(hook_type, ""))
    if data.get("hookPresent") is not False and data.get("hook_present") is not False:
        _add(facets.content_hook, "hook_present")

    # Text features
    if _first(data, "hasSubtitles", "has_subtitles", "subtitles"):
        _add(facets.text_features, "subtitles")
    if _first(data, "hasTextOverlays", "has_text_overlays", "text_overlays"):
        _add(facets.text_features, "text_overlay")

    # Talent & face
    if _first(data, "facePresence", "face_presence", "humanPresent"):
        _add(facets.talent_face, "human_present")
        _add(facets.talent_face, "face_visible")
    if _first(data, "isUGCStyle", "is_ugc", "ugc"):
        _add(facets.talent_face, "ugc_creator")

    # Sentiment
    tone = _lower(data, "emotionalTone", "emotional_tone")
    _add(facets.sentiment, SENTIMENT_MAP.get(tone, ""))

    # Brand
    logo = _lower(data, "logoConsistency", "logo_consistency")
    if logo and logo != "absent":
        _add(facets.brand, "brand_present")
    logo_timing = _lower(data, "logoTiming", "logo_timing")
    if logo_timing == "intro":
        _add(facets.brand, "early_reveal")
    elif logo_timing == "outro":
        _add(facets.brand, "late_reveal")

    # CTA
    cta_type = _lower(data, "cta", "ctaType", "cta_type")
    _add(facets.cta, CTA_TYPE_MAP.get(cta_type, ""))
    _add(facets.cta, _lower(data, "ctaStrength", "cta_strength"))

    return facets


# =============================================================================
# Utilities
# =============================================================================

def create_empty_facet_set() -> FacetSet:
    return FacetSet()


def flatten_facets(facets: FacetSet) -> List[str]:
    """All facet values as 'group:value' strings, in group order."""
    flat = []
    for group in FACET_GROUPS:
        for value in facets.group(group):
            flat.append(f"{group}:{value}")
    return flat


def has_facet(facets: FacetSet, group: str, value: str) -> bool:
    if group not in FACET_GROUPS:
        return False
    return value in facets.group(group)


def count_matching_facets(a: FacetSet, b: FacetSet) -> int:
    """Number of group:value pairs present in both sets."""
    return len(set(flatten_facets(a)) & set(flatten_facets(b)))


def get_differing_facet_groups(a: FacetSet, b: FacetSet) -> List[str]:
    """Groups whose value sets differ between a and b."""
    return [
        group for group in FACET_GROUPS
        if set(a.group(group)) != set(b.group(group))
    ]
