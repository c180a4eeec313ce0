"""
Non-retrieval (legacy) predictors.

The safety wrapper and the blended prediction paths need a second opinion
that does not depend on similar historical ads. Anything with an async
``predict(ad) -> LegacyPrediction`` works; ``TraitHeuristicPredictor`` is a
rule-based default scored from the ad's extracted creative traits.
"""

import logging
from typing import Dict, Protocol

from orbcast.core.models import AdEntry, LegacyPrediction, TraitValue

from .ad_orb import extract_traits

logger = logging.getLogger(__name__)

BASE_SCORE = 50.0
BASE_CONFIDENCE = 20.0

# Points added when a trait is present (or matches the given value)
POSITIVE_FACTORS: Dict[str, Dict[TraitValue, float]] = {
    "ugc": {True: 12.0},
    "subtitles": {True: 8.0},
    "voiceover": {True: 5.0},
    "hook": {"curiosity": 7.0, "shock": 7.0, "question": 4.0},
    "editing": {"fast_cuts": 4.0},
    "platform": {"tiktok": 3.0},
    "social_proof": {True: 3.0},
}

# Points removed when a boolean trait is explicitly absent
MISSING_PENALTIES: Dict[str, float] = {
    "subtitles": 4.0,
}

CONFIDENCE_PER_KNOWN_TRAIT = 2.0
MAX_HEURISTIC_CONFIDENCE = 45.0


class LegacyPredictor(Protocol):
    """Prediction source that does not use retrieval."""

    async def predict(self, ad: AdEntry) -> LegacyPrediction: ...


class TraitHeuristicPredictor:
    """
    Rule-based score from creative traits.

    Starts at 50 and adds fixed points for traits that historically help
    (UGC style, subtitles, curiosity hooks...). Confidence grows with the
    number of known traits but stays low: this is a fallback, not a model.
    """

    async def predict(self, ad: AdEntry) -> LegacyPrediction:
        traits = extract_traits(ad.extracted_content)

        score = BASE_SCORE
        for trait, values in POSITIVE_FACTORS.items():
            value = traits.get(trait)
            if value is not None and value in values:
                score += values[value]

        for trait, penalty in MISSING_PENALTIES.items():
            if traits.get(trait) is False:
                score -= penalty

        known = sum(1 for v in traits.values() if v not in (None, False, ""))
        confidence = min(MAX_HEURISTIC_CONFIDENCE, BASE_CONFIDENCE + known * CONFIDENCE_PER_KNOWN_TRAIT)

        score = max(0.0, min(100.0, score))
        logger.debug(f"Heuristic prediction for {ad.id}: {score:.1f} ({confidence:.0f}% confidence)")
        return LegacyPrediction(score=score, confidence=confidence)


class FixedLegacyPredictor:
    """Always returns the same prediction. Useful as a neutral default."""

    def __init__(self, score: float = BASE_SCORE, confidence: float = BASE_CONFIDENCE):
        self.prediction = LegacyPrediction(score=score, confidence=confidence)

    async def predict(self, ad: AdEntry) -> LegacyPrediction:
        return self.prediction
