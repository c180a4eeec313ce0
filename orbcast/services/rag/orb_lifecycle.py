"""Orb lifecycle: creation, the forward-only state machine, lineage and validation.

States move strictly forward: suggested -> draft -> published -> observed.
Drafts may be re-saved as drafts. ``transition`` is the only way to change
state; every operation returns a new Orb and never mutates its input.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from orbcast.core.models import (
    CreatedFrom,
    ExperimentalLever,
    LearningIntent,
    LearningRecord,
    Orb,
    OrbDerived,
    OrbRaw,
    OrbResults,
    OrbSource,
    OrbSpec,
    OrbState,
    utcnow,
)

logger = logging.getLogger(__name__)

EMBEDDING_VERSION = "1.0.0"

VALID_TRANSITIONS: Dict[OrbState, List[OrbState]] = {
    OrbState.SUGGESTED: [OrbState.DRAFT],
    OrbState.DRAFT: [OrbState.PUBLISHED, OrbState.DRAFT],
    OrbState.PUBLISHED: [OrbState.OBSERVED],
    OrbState.OBSERVED: [],
}

# Default prediction used for learning records when a suggestion was never scored
DEFAULT_PREDICTED_SCORE = 50.0

# One lever is tested per suggested orb
EXPERIMENTAL_LEVERS: List[ExperimentalLever] = [
    ExperimentalLever(
        id="brand_timing", name="Brand Reveal Timing",
        description="Early vs late brand reveal", facet_group="brand",
        control_value="early_reveal", variant_value="late_reveal",
    ),
    ExperimentalLever(
        id="voiceover", name="Voiceover",
        description="Voiceover on vs off", facet_group="audio_voice",
        control_value=False, variant_value=True,
    ),
    ExperimentalLever(
        id="animation", name="Animation Style",
        description="Animation vs live action", facet_group="media_format",
        control_value="live_action", variant_value="animated",
    ),
    ExperimentalLever(
        id="jingle", name="Audio Jingle",
        description="Jingle vs silence/ambient", facet_group="audio_voice",
        control_value="music", variant_value="jingle",
    ),
    ExperimentalLever(
        id="subtitles", name="Subtitles",
        description="Subtitles on vs off", facet_group="text_features",
        control_value=False, variant_value=True,
    ),
    ExperimentalLever(
        id="ugc_style", name="UGC Style",
        description="UGC creator vs professional", facet_group="talent_face",
        control_value="professional", variant_value="ugc_creator",
    ),
    ExperimentalLever(
        id="hook_type", name="Hook Type",
        description="Different hook approaches", facet_group="content_hook",
        control_value="curiosity", variant_value="question",
    ),
    ExperimentalLever(
        id="cta_strength", name="CTA Strength",
        description="Strong vs subtle CTA", facet_group="cta",
        control_value="moderate", variant_value="strong",
    ),
]


class InvalidStateTransition(Exception):
    """Raised when an orb is asked to move to a state its current state does not allow."""

    def __init__(self, current_state: OrbState, target_state: OrbState, orb_id: Optional[str] = None):
        self.current_state = OrbState(current_state)
        self.target_state = OrbState(target_state)
        self.orb_id = orb_id
        allowed = [s.value for s in VALID_TRANSITIONS[self.current_state]]
        super().__init__(
            f"Invalid transition {self.current_state.value} -> {self.target_state.value}"
            f"{f' for orb {orb_id}' if orb_id else ''} (allowed: {allowed or 'none'})"
        )


class OrbNotFound(KeyError):
    """Raised when a lineage lookup references an unknown orb id."""


# =============================================================================
# Creation
# =============================================================================

def create_orb(
    state: OrbState,
    spec: OrbSpec,
    raw: Optional[OrbRaw] = None,
    created_from: CreatedFrom = CreatedFrom.USER,
    parent_orb_id: Optional[str] = None,
    learning_intent: Optional[LearningIntent] = None,
    results: Optional[OrbResults] = None,
) -> Orb:
    """Create a new orb with an empty derived block."""
    now = utcnow()
    if results is not None and OrbState(state) != OrbState.OBSERVED:
        raise ValueError("Results can only be set on observed orbs")

    orb = Orb(
        state=state,
        created_from=created_from,
        parent_orb_id=parent_orb_id,
        raw=raw or OrbRaw(created_at=now),
        derived=OrbDerived(embedding_version=EMBEDDING_VERSION, created_at=now),
        spec=spec,
        learning_intent=learning_intent,
        results=results,
        created_at=now,
        updated_at=now,
    )
    logger.debug(f"Created orb {orb.id} in state {orb.state.value}")
    return orb


def create_suggested_orb(
    spec: OrbSpec,
    parent_orb_id: Optional[str],
    learning_intent: LearningIntent,
) -> Orb:
    return create_orb(
        OrbState.SUGGESTED,
        spec,
        raw=OrbRaw(source=OrbSource.AI_GENERATED),
        created_from=CreatedFrom.AI,
        parent_orb_id=parent_orb_id,
        learning_intent=learning_intent,
    )


def create_user_orb(spec: OrbSpec, raw: Optional[OrbRaw] = None) -> Orb:
    return create_orb(OrbState.DRAFT, spec, raw=raw, created_from=CreatedFrom.USER)


def create_imported_orb(
    spec: OrbSpec,
    raw: Optional[OrbRaw] = None,
    results: Optional[OrbResults] = None,
) -> Orb:
    """Imported ads are already live: observed if results came with them, else published."""
    if results is not None and results.fetched_at is None:
        results = results.model_copy(update={"fetched_at": utcnow()})
    state = OrbState.OBSERVED if results is not None else OrbState.PUBLISHED
    return create_orb(
        state,
        spec,
        raw=raw or OrbRaw(source=OrbSource.FACEBOOK_IMPORT),
        created_from=CreatedFrom.USER,
        results=results,
    )


# =============================================================================
# State machine
# =============================================================================

def can_transition(current: OrbState, target: OrbState) -> bool:
    return OrbState(target) in VALID_TRANSITIONS[OrbState(current)]


def transition(
    orb: Orb,
    target: OrbState,
    spec: Optional[OrbSpec] = None,
    results: Optional[OrbResults] = None,
) -> Orb:
    """Move an orb to ``target``.

    Only two payloads travel with a transition: a new ``spec`` when a draft
    is re-saved as a draft, and ``results`` when a published orb becomes
    observed. Raw data, lineage and identity never change.

    Args:
        orb: Orb to transition (not mutated).
        target: Requested state.
        spec: Replacement spec, draft -> draft only.
        results: Results to attach, published -> observed only (required there).

    Returns:
        New Orb in the target state with a fresh ``updated_at``.

    Raises:
        InvalidStateTransition: If target is not reachable from orb.state.
        ValueError: If spec or results accompany any other transition.
    """
    target = OrbState(target)
    if not can_transition(orb.state, target):
        raise InvalidStateTransition(orb.state, target, orb.id)

    changes: Dict[str, Any] = {"state": target, "updated_at": utcnow()}

    if spec is not None:
        if not (orb.state == OrbState.DRAFT and target == OrbState.DRAFT):
            raise ValueError(f"Spec can only change on a draft -> draft save (orb {orb.id})")
        changes["spec"] = OrbSpec.model_validate(spec.model_dump())

    if target == OrbState.OBSERVED:
        if results is None:
            raise ValueError(f"Results are required to observe orb {orb.id}")
        changes["results"] = OrbResults.model_validate(results.model_dump())
    elif results is not None:
        raise ValueError(f"Results can only be attached when publishing -> observed (orb {orb.id})")

    logger.debug(f"Orb {orb.id}: {orb.state.value} -> {target.value}")
    return orb.model_copy(update=changes, deep=True)


def convert_suggested_to_draft(orb: Orb) -> Orb:
    return transition(orb, OrbState.DRAFT)


def update_draft(orb: Orb, spec_updates: Dict[str, Any]) -> Orb:
    """Merge spec changes into a draft. Only drafts are editable."""
    if orb.state != OrbState.DRAFT:
        raise InvalidStateTransition(orb.state, OrbState.DRAFT, orb.id)
    spec = OrbSpec.model_validate({**orb.spec.model_dump(), **spec_updates})
    return transition(orb, OrbState.DRAFT, spec=spec)


def publish_draft(orb: Orb) -> Orb:
    return transition(orb, OrbState.PUBLISHED)


def attach_results(orb: Orb, results: OrbResults) -> Orb:
    """First results for a published orb: moves it to observed and stamps fetched_at."""
    if orb.state != OrbState.PUBLISHED:
        raise InvalidStateTransition(orb.state, OrbState.OBSERVED, orb.id)
    stamped = results.model_copy(update={"fetched_at": utcnow()})
    return transition(orb, OrbState.OBSERVED, results=stamped)


def update_results(orb: Orb, results: OrbResults) -> Orb:
    """Refresh results on an already observed orb. State does not change."""
    if orb.state != OrbState.OBSERVED:
        raise InvalidStateTransition(orb.state, OrbState.OBSERVED, orb.id)
    now = utcnow()
    fetched_at = orb.results.fetched_at if orb.results else None
    refreshed = results.model_copy(
        update={"fetched_at": results.fetched_at or fetched_at, "updated_at": now}
    )
    return orb.model_copy(update={"results": refreshed, "updated_at": now}, deep=True)


# =============================================================================
# Lineage
# =============================================================================

def _index(orbs: Iterable[Orb]) -> Dict[str, Orb]:
    return {o.id: o for o in orbs}


def get_orb_lineage(orb_id: str, orbs: Iterable[Orb]) -> List[Orb]:
    """Ancestry chain from the oldest known ancestor down to ``orb_id``.

    Raises:
        OrbNotFound: If orb_id is not among orbs.
    """
    by_id = _index(orbs)
    if orb_id not in by_id:
        raise OrbNotFound(orb_id)

    chain = []
    seen = set()
    current: Optional[Orb] = by_id[orb_id]
    while current is not None and current.id not in seen:
        chain.append(current)
        seen.add(current.id)
        current = by_id.get(current.parent_orb_id) if current.parent_orb_id else None

    chain.reverse()
    return chain


def get_orb_descendants(orb_id: str, orbs: Iterable[Orb]) -> List[Orb]:
    """All orbs descending from ``orb_id`` (children, grandchildren, ...)."""
    all_orbs = list(orbs)
    children: Dict[str, List[Orb]] = {}
    for o in all_orbs:
        if o.parent_orb_id:
            children.setdefault(o.parent_orb_id, []).append(o)

    out = []
    seen = {orb_id}
    stack = list(children.get(orb_id, []))
    while stack:
        child = stack.pop(0)
        if child.id in seen:
            continue
        seen.add(child.id)
        out.append(child)
        stack.extend(children.get(child.id, []))
    return out


def is_descendant_of(orb_id: str, ancestor_id: str, orbs: Iterable[Orb]) -> bool:
    try:
        lineage = get_orb_lineage(orb_id, orbs)
    except OrbNotFound:
        return False
    return any(o.id == ancestor_id for o in lineage[:-1])


# =============================================================================
# Queries
# =============================================================================

def filter_by_state(orbs: Iterable[Orb], state: OrbState) -> List[Orb]:
    return [o for o in orbs if o.state == state]


def get_suggested_orbs(orbs: Iterable[Orb]) -> List[Orb]:
    return filter_by_state(orbs, OrbState.SUGGESTED)


def get_observed_orbs(orbs: Iterable[Orb]) -> List[Orb]:
    return filter_by_state(orbs, OrbState.OBSERVED)


def get_user_ads(orbs: Iterable[Orb]) -> List[Orb]:
    return [o for o in orbs if o.created_from == CreatedFrom.USER]


def get_ai_suggestions(orbs: Iterable[Orb]) -> List[Orb]:
    return [o for o in orbs if o.created_from == CreatedFrom.AI]


# =============================================================================
# Validation + learning
# =============================================================================

def validate_orb(orb: Orb) -> List[str]:
    """Return a list of contract violations (empty when valid)."""
    errors = []
    if not orb.id:
        errors.append("Missing id")

    if orb.state == OrbState.SUGGESTED and orb.learning_intent is None:
        errors.append("Suggested orbs must have learning_intent")
    if orb.state == OrbState.OBSERVED and orb.results is None:
        errors.append("Observed orbs must have results")
    if orb.results is not None and orb.state != OrbState.OBSERVED:
        errors.append("Only observed orbs may carry results")

    if not orb.spec.platform:
        errors.append("Spec missing platform")
    if not orb.spec.objective:
        errors.append("Spec missing objective")
    if orb.spec.facets is None:
        errors.append("Spec missing facets")

    return errors


def create_learning_record(suggestion: Orb, observed: Orb) -> Optional[LearningRecord]:
    """Compare a suggestion's prediction with the observed outcome of its test."""
    if suggestion.learning_intent is None:
        return None
    if observed.results is None or observed.results.success_score is None:
        return None

    predicted = suggestion.prediction.score if suggestion.prediction else DEFAULT_PREDICTED_SCORE
    actual = observed.results.success_score
    return LearningRecord(
        original_suggestion_id=suggestion.id,
        observed_orb_id=observed.id,
        experiment_lever=suggestion.learning_intent.experiment_lever,
        predicted_score=predicted,
        actual_score=actual,
        delta=actual - predicted,
    )


def get_lever(lever_id: str) -> Optional[ExperimentalLever]:
    for lever in EXPERIMENTAL_LEVERS:
        if lever.id == lever_id:
            return lever
    return None
