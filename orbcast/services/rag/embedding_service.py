"""
Embedding generation for orbs.

Builds the three canonical texts (creative / script / visual) an Orb is
embedded from, plus the single trait canonical text used for AdOrbs, and
turns them into vectors through an EmbeddingProvider. Provider failures,
timeouts and a missing provider all degrade to the deterministic fallback
embedding, so this service never fails to return a vector.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from orbcast.core.config import DEFAULT_SAFETY_CONFIG, SafetyConfig
from orbcast.core.embeddings import (
    FALLBACK_DIM,
    EmbeddingCache,
    EmbeddingProvider,
    cosine_similarity,
    fallback_embedding,
)
from orbcast.core.models import (
    AdOrb,
    CanonicalTexts,
    EmbeddingSet,
    FacetSet,
    Orb,
    TraitValue,
    utcnow,
)

logger = logging.getLogger(__name__)

# Weighted combination of the three embedding spaces
CREATIVE_WEIGHT = 0.5
SCRIPT_WEIGHT = 0.3
VISUAL_WEIGHT = 0.2

EMPTY_TEXT = "empty"

# Ordered by importance so canonical text is deterministic
CANONICAL_TRAIT_ORDER = [
    # Platform & media
    "platform", "placement", "media_type", "aspect_ratio", "duration",
    # Creative style
    "hook", "category", "editing", "color", "pattern", "tone", "sentiment",
    # Audio
    "music", "bpm", "voiceover", "voiceover_style",
    # Visual elements
    "ugc", "subtitles", "text_overlays", "face_presence", "scene_velocity", "composition",
    # Talent
    "actors", "talent",
    # CTA & engagement
    "cta_type", "cta_strength", "hook_velocity", "curiosity_gap",
    "social_proof", "urgency", "trust_signals",
    # Brand
    "logo", "brand_color",
    # Campaign
    "objective", "budget_tier", "audience", "age_group", "retention",
]

# Volatile keys that never belong in canonical text
EXCLUDED_KEYS = ["id", "createdAt", "updatedAt", "lastAccessedAt", "embeddingGeneratedAt"]


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _joined(values: Any, sep: str = " ") -> str:
    return sep.join(str(v) for v in values).lower()


# =============================================================================
# Canonical texts (Orb)
# =============================================================================

def build_creative_summary(analysis_json: Dict[str, Any], facets: Optional[FacetSet] = None) -> str:
    """Concept-level text: description, hook, pattern, tone, claims, structure."""
    data = analysis_json or {}
    lines: List[str] = []

    if data.get("description"):
        lines.append(f"description={str(data['description']).lower()[:200]}")

    for label, keys in (
        ("category", ("contentCategory", "content_category")),
        ("hook", ("hookType", "hook_type")),
        ("pattern", ("patternType", "pattern_type")),
        ("tone", ("emotionalTone", "emotional_tone")),
        ("sentiment", ("overallSentiment", "overall_sentiment")),
        ("editing", ("editingStyle", "editing_style")),
    ):
        value = _pick(data, *keys)
        if value:
            lines.append(f"{label}={str(value).lower()}")

    if isinstance(data.get("claims"), list):
        lines.append(f"claims={_joined(data['claims'])[:200]}")

    structure = _pick(data, "adStructure", "structure")
    if structure:
        if isinstance(structure, (dict, list)):
            lines.append(f"structure={json.dumps(structure).lower()[:100]}")
        else:
            lines.append(f"structure={str(structure).lower()}")

    if facets:
        if facets.content_hook:
            lines.append(f"content_hook={','.join(facets.content_hook)}")
        if facets.sentiment:
            lines.append(f"sentiment_facets={','.join(facets.sentiment)}")
        if facets.media_format:
            lines.append(f"format={','.join(facets.media_format)}")

    return "\n".join(lines)


def build_script_summary(analysis_json: Dict[str, Any]) -> str:
    """Spoken and written words: script, ASR, overlays, headlines, CTA."""
    data = analysis_json or {}
    lines: List[str] = []

    if data.get("script"):
        lines.append(f"script={str(data['script']).lower()[:500]}")

    asr = _pick(data, "asr", "transcription", "speechText")
    if asr:
        lines.append(f"asr={str(asr).lower()[:500]}")

    events = data.get("on_screen_text_events")
    if isinstance(events, list):
        texts = " ".join(
            str(e.get("text")) for e in events if isinstance(e, dict) and e.get("text")
        )
        lines.append(f"text_overlay={texts.lower()[:300]}")

    if isinstance(data.get("headlines"), list):
        lines.append(f"headlines={_joined(data['headlines'])}")

    cta_text = _pick(data, "ctaText", "cta_text")
    if cta_text:
        lines.append(f"cta_text={str(cta_text).lower()}")

    if data.get("cta"):
        lines.append(f"cta_type={str(data['cta']).lower()}")

    hook_text = _pick(data, "hookText", "hook_text")
    if hook_text:
        lines.append(f"hook_text={str(hook_text).lower()}")

    if isinstance(data.get("painPoints"), list):
        lines.append(f"pain_points={_joined(data['painPoints'])}")

    return "\n".join(lines)


def build_visual_summary(analysis_json: Dict[str, Any]) -> str:
    """Look and motion: palette, composition, pace, objects, shots, format."""
    data = analysis_json or {}
    lines: List[str] = []

    for label, keys in (
        ("color", ("colorScheme", "color_scheme")),
        ("temperature", ("colorTemperature", "color_temperature")),
        ("composition", ("shotComposition", "shot_composition")),
        ("velocity", ("sceneVelocity", "scene_velocity")),
    ):
        value = _pick(data, *keys)
        if value:
            lines.append(f"{label}={str(value).lower()}")

    tracks = data.get("object_tracks")
    if isinstance(tracks, list):
        labels: List[str] = []
        for track in tracks:
            label = track.get("label") if isinstance(track, dict) else None
            if label and label not in labels:
                labels.append(str(label))
        lines.append(f"objects={','.join(labels).lower()}")

    shots = data.get("shots")
    if isinstance(shots, list):
        descriptions = " ".join(
            str(s.get("description")) for s in shots
            if isinstance(s, dict) and s.get("description")
        )
        lines.append(f"shots={descriptions.lower()[:300]}")

    if isinstance(data.get("visualStyle"), list):
        lines.append(f"style={_joined(data['visualStyle'], ',')}")

    aspect = _pick(data, "aspectRatio", "aspect_ratio")
    if aspect:
        lines.append(f"aspect={aspect}")

    media = _pick(data, "mediaType", "media_type")
    if media:
        lines.append(f"media={str(media).lower()}")

    if _pick(data, "facePresence", "face_presence"):
        lines.append("face_present=true")
    faces = _pick(data, "numberOfFaces", "number_of_faces")
    if faces:
        lines.append(f"faces={faces}")

    if data.get("logoConsistency"):
        lines.append(f"logo={str(data['logoConsistency']).lower()}")

    return "\n".join(lines)


def build_canonical_texts(analysis_json: Dict[str, Any], facets: Optional[FacetSet] = None) -> CanonicalTexts:
    return CanonicalTexts(
        creative=build_creative_summary(analysis_json, facets),
        script=build_script_summary(analysis_json),
        visual=build_visual_summary(analysis_json),
    )


# =============================================================================
# Canonical text (AdOrb traits)
# =============================================================================

def normalize_value(value: TraitValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return str(value).lower().strip()


def build_canonical_text(orb: AdOrb) -> str:
    """
    Deterministic ``key=value`` lines for an AdOrb's traits.

    Known keys come first in CANONICAL_TRAIT_ORDER; any others follow
    alphabetically. Volatile keys are excluded.

    Example:
        platform=tiktok
        hook=curiosity
        ugc=true
    """
    lines: List[str] = []
    traits = orb.traits

    for key in CANONICAL_TRAIT_ORDER:
        value = traits.get(key)
        if value is None:
            continue
        normalized = normalize_value(value)
        if normalized:
            lines.append(f"{key}={normalized}")

    remaining = sorted(
        k for k in traits
        if k not in CANONICAL_TRAIT_ORDER and k not in EXCLUDED_KEYS
    )
    for key in remaining:
        value = traits[key]
        if value is None:
            continue
        normalized = normalize_value(value)
        if normalized:
            lines.append(f"{key}={normalized}")

    return "\n".join(lines)


# =============================================================================
# Embedding set helpers
# =============================================================================

def compute_multi_embedding_similarity(a: EmbeddingSet, b: EmbeddingSet) -> Dict[str, float]:
    """Per-space cosine similarity and the 0.5/0.3/0.2 weighted combination."""
    creative = cosine_similarity(a.creative, b.creative)
    script = cosine_similarity(a.script, b.script)
    visual = cosine_similarity(a.visual, b.visual)
    return {
        "creative_similarity": creative,
        "script_similarity": script,
        "visual_similarity": visual,
        "weighted_similarity": (
            CREATIVE_WEIGHT * creative + SCRIPT_WEIGHT * script + VISUAL_WEIGHT * visual
        ),
    }


def is_valid_embedding_set(embeddings: EmbeddingSet) -> bool:
    return bool(embeddings.creative and embeddings.script and embeddings.visual)


def create_empty_embedding_set(dimensions: int = FALLBACK_DIM) -> EmbeddingSet:
    return EmbeddingSet(
        creative=[0.0] * dimensions,
        script=[0.0] * dimensions,
        visual=[0.0] * dimensions,
    )


# =============================================================================
# Service
# =============================================================================

class EmbeddingService:
    """
    Turns canonical texts into vectors.

    Args:
        provider: Optional EmbeddingProvider (e.g. GeminiEmbeddingProvider).
            When None, every text uses the deterministic fallback.
        safety_config: Supplies the per-embedding timeout and cache TTL.
        cache: Optional shared EmbeddingCache.
        dimensions: Fallback vector size.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        safety_config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
        cache: Optional[EmbeddingCache] = None,
        dimensions: int = FALLBACK_DIM,
    ):
        self.provider = provider
        self.safety_config = safety_config
        self.cache = cache if cache is not None else EmbeddingCache(
            ttl_ms=safety_config.embedding_cache_ttl_ms
        )
        self.dimensions = dimensions

    async def embed_text(self, text: str) -> List[float]:
        """Embed one text. Never raises; falls back deterministically."""
        text = text or EMPTY_TEXT

        cached = self.cache.get(text)
        if cached is not None:
            return cached

        vector = None
        if self.provider is not None:
            try:
                vector = await asyncio.wait_for(
                    self.provider.embed(text),
                    timeout=self.safety_config.embedding_timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Embedding provider timed out after {self.safety_config.embedding_timeout_ms}ms, "
                    f"using fallback"
                )
            except Exception as e:
                logger.warning(f"Embedding provider failed, using fallback: {e}")

        if not vector:
            # Fallback vectors are never cached
            return fallback_embedding(text, self.dimensions)

        self.cache.set(text, vector)
        return list(vector)

    async def generate_multi_embeddings_with_texts(
        self, analysis_json: Dict[str, Any], facets: Optional[FacetSet] = None
    ) -> Tuple[EmbeddingSet, CanonicalTexts]:
        texts = build_canonical_texts(analysis_json, facets)
        creative, script, visual = await asyncio.gather(
            self.embed_text(texts.creative or EMPTY_TEXT),
            self.embed_text(texts.script or EMPTY_TEXT),
            self.embed_text(texts.visual or EMPTY_TEXT),
        )
        return EmbeddingSet(creative=creative, script=script, visual=visual), texts

    async def generate_multi_embeddings(
        self, analysis_json: Dict[str, Any], facets: Optional[FacetSet] = None
    ) -> EmbeddingSet:
        embeddings, _ = await self.generate_multi_embeddings_with_texts(analysis_json, facets)
        return embeddings

    async def populate_orb_embeddings(self, orb: Orb) -> Orb:
        """Return a copy of the orb with derived embeddings and canonical texts filled in."""
        embeddings, texts = await self.generate_multi_embeddings_with_texts(
            orb.raw.analysis_json, orb.derived.facets
        )
        derived = orb.derived.model_copy(update={
            "embeddings": embeddings,
            "canonical_texts": texts,
            "created_at": utcnow(),
        })
        return orb.model_copy(update={"derived": derived, "updated_at": utcnow()})

    async def generate_orb_embedding(self, orb: AdOrb) -> AdOrb:
        """Return a copy of the AdOrb with canonical_text and embedding set."""
        canonical_text = build_canonical_text(orb)
        embedding = await self.embed_text(canonical_text)
        return orb.model_copy(update={"canonical_text": canonical_text, "embedding": embedding})

    async def generate_orb_embeddings_batch(
        self, orbs: List[AdOrb], batch_size: int = 5, delay_ms: int = 100
    ) -> List[AdOrb]:
        """Embed orbs in parallel batches with a short pause between batches."""
        results: List[AdOrb] = []
        for i in range(0, len(orbs), batch_size):
            batch = orbs[i:i + batch_size]
            results.extend(await asyncio.gather(*(self.generate_orb_embedding(o) for o in batch)))
            if i + batch_size < len(orbs):
                await asyncio.sleep(delay_ms / 1000)

        logger.info(f"Generated embeddings for {len(results)} orbs")
        return results
