"""
Similarity scoring for retrieval.

Vector similarity (cosine rescaled to [0, 1]), weighted structured trait
overlap, their hybrid, and exponential recency decay.
"""

import math
import logging
from datetime import datetime
from typing import List, Optional

import numpy as np

from orbcast.core.config import DEFAULT_RAG_CONFIG, RAGConfig
from orbcast.core.models import AdOrb, NeighborAd, TraitValue, as_utc, utcnow

logger = logging.getLogger(__name__)

# Higher weight = more predictive trait
TRAIT_WEIGHTS = {
    "platform": 2.0,
    "hook": 1.5,
    "category": 1.5,
    "objective": 1.5,
    "ugc": 1.3,
    "editing": 1.2,
    "audience": 1.2,
    "subtitles": 1.0,
    "voiceover": 1.0,
    "music": 1.0,
    "placement": 1.0,
    "cta_type": 0.8,
    "tone": 0.8,
    "pattern": 0.8,
}
DEFAULT_TRAIT_WEIGHT = 0.5

MAJOR_TRAITS = ["platform", "hook", "category", "ugc", "editing"]

MIN_RECENCY_WEIGHT = 0.1


def _same_value(a: TraitValue, b: TraitValue) -> bool:
    # True == 1 in Python; a boolean never matches a number
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


# =============================================================================
# Vector similarity
# =============================================================================

def compute_vector_similarity(embedding_a: Optional[List[float]], embedding_b: Optional[List[float]]) -> float:
    """
    Cosine similarity mapped from [-1, 1] to [0, 1].

    Returns 0.0 for empty or zero-magnitude vectors and for dimension
    mismatches (logged, not raised).
    """
    if not embedding_a or not embedding_b:
        return 0.0

    if len(embedding_a) != len(embedding_b):
        logger.warning(
            f"Embedding dimension mismatch: {len(embedding_a)} vs {len(embedding_b)}"
        )
        return 0.0

    a = np.asarray(embedding_a, dtype=float)
    b = np.asarray(embedding_b, dtype=float)
    magnitude_a = float(np.linalg.norm(a))
    magnitude_b = float(np.linalg.norm(b))
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    cosine = float(np.dot(a, b) / (magnitude_a * magnitude_b))
    # Rounding can push |cos| marginally past 1
    cosine = max(-1.0, min(1.0, cosine))
    return (cosine + 1) / 2


# =============================================================================
# Structured similarity
# =============================================================================

def compute_structured_similarity(orb_a: AdOrb, orb_b: AdOrb) -> float:
    """
    Weighted trait overlap over the union of both orbs' trait keys.

    Exact match earns the trait's weight, partial string containment earns
    half, anything else earns nothing. Normalized by the total weight.
    """
    traits_a = orb_a.traits
    traits_b = orb_b.traits

    match_score = 0.0
    total_weight = 0.0

    for key in set(traits_a) | set(traits_b):
        weight = TRAIT_WEIGHTS.get(key, DEFAULT_TRAIT_WEIGHT)
        total_weight += weight

        if key not in traits_a or key not in traits_b:
            continue

        value_a = traits_a[key]
        value_b = traits_b[key]
        if _same_value(value_a, value_b):
            match_score += weight
        elif isinstance(value_a, str) and isinstance(value_b, str):
            if value_a in value_b or value_b in value_a:
                match_score += weight * 0.5

    if total_weight == 0:
        return 0.0
    return match_score / total_weight


def compute_major_trait_overlap(orb_a: AdOrb, orb_b: AdOrb) -> float:
    """Fraction of major traits (present on either side) that match exactly."""
    matches = 0
    total = 0
    for trait in MAJOR_TRAITS:
        if trait in orb_a.traits or trait in orb_b.traits:
            total += 1
            a = orb_a.traits.get(trait)
            b = orb_b.traits.get(trait)
            if a is not None and b is not None and _same_value(a, b):
                matches += 1
    return matches / total if total else 0.0


# =============================================================================
# Hybrid + recency
# =============================================================================

def compute_hybrid_similarity(
    orb_a: AdOrb,
    orb_b: AdOrb,
    vector_weight: float = DEFAULT_RAG_CONFIG.vector_weight,
    structured_weight: float = DEFAULT_RAG_CONFIG.structured_weight,
) -> float:
    vector_sim = compute_vector_similarity(orb_a.embedding, orb_b.embedding)
    structured_sim = compute_structured_similarity(orb_a, orb_b)
    return vector_weight * vector_sim + structured_weight * structured_sim


def compute_recency_weight(
    created_at: datetime,
    decay_days: float = DEFAULT_RAG_CONFIG.recency_decay_days,
    now: Optional[datetime] = None,
) -> float:
    """Exponential decay with half-life ``decay_days``, floored at 0.1."""
    now = as_utc(now) if now else utcnow()
    age_days = (now - as_utc(created_at)).total_seconds() / 86400

    if age_days <= 0:
        return 1.0

    weight = math.exp(-math.log(2) * age_days / decay_days)
    return max(MIN_RECENCY_WEIGHT, weight)


# =============================================================================
# Neighbor scoring
# =============================================================================

def score_neighbor(
    query: AdOrb,
    candidate: AdOrb,
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    now: Optional[datetime] = None,
) -> NeighborAd:
    """Score one candidate against the query."""
    vector_similarity = compute_vector_similarity(query.embedding, candidate.embedding)
    structured_similarity = compute_structured_similarity(query, candidate)
    hybrid_similarity = (
        config.vector_weight * vector_similarity
        + config.structured_weight * structured_similarity
    )
    recency_weight = compute_recency_weight(
        candidate.metadata.created_at, config.recency_decay_days, now
    )

    return NeighborAd(
        orb=candidate,
        vector_similarity=vector_similarity,
        structured_similarity=structured_similarity,
        hybrid_similarity=hybrid_similarity,
        recency_weight=recency_weight,
        weighted_similarity=hybrid_similarity * recency_weight,
    )


def score_neighbors(
    query: AdOrb,
    candidates: List[AdOrb],
    config: RAGConfig = DEFAULT_RAG_CONFIG,
    now: Optional[datetime] = None,
) -> List[NeighborAd]:
    """Score candidates, drop self-matches and weak matches, sort best-first."""
    now = now or utcnow()
    scored = [
        score_neighbor(query, c, config, now)
        for c in candidates
        if c.id != query.id
    ]
    scored = [n for n in scored if n.hybrid_similarity >= config.min_similarity]
    scored.sort(key=lambda n: n.weighted_similarity, reverse=True)
    return scored
