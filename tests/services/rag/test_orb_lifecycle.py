"""
Tests for orb creation, state transitions, lineage and learning records.
"""

import pytest

from orbcast.core.models import (
    CreatedFrom,
    LearningIntent,
    OrbPrediction,
    OrbResults,
    OrbSource,
    OrbSpec,
    OrbState,
    PredictionMethod,
)
from orbcast.services.rag.orb_lifecycle import (
    InvalidStateTransition,
    OrbNotFound,
    attach_results,
    can_transition,
    convert_suggested_to_draft,
    create_imported_orb,
    create_learning_record,
    create_orb,
    create_suggested_orb,
    create_user_orb,
    get_ai_suggestions,
    get_lever,
    get_orb_descendants,
    get_orb_lineage,
    is_descendant_of,
    publish_draft,
    transition,
    update_draft,
    update_results,
    validate_orb,
)


def _spec(**kwargs):
    return OrbSpec(platform=kwargs.pop("platform", "tiktok"), **kwargs)


def _intent(lever="subtitles"):
    return LearningIntent(experiment_lever=lever, reason="Testing subtitles")


class TestCreation:
    def test_user_orb_is_draft(self):
        orb = create_user_orb(_spec())
        assert orb.state == OrbState.DRAFT
        assert orb.created_from == CreatedFrom.USER
        assert orb.results is None
        assert validate_orb(orb) == []

    def test_suggested_orb(self):
        orb = create_suggested_orb(_spec(), "parent-1", _intent())
        assert orb.state == OrbState.SUGGESTED
        assert orb.created_from == CreatedFrom.AI
        assert orb.raw.source == OrbSource.AI_GENERATED
        assert orb.parent_orb_id == "parent-1"

    def test_imported_with_results_is_observed(self):
        orb = create_imported_orb(_spec(), results=OrbResults(success_score=72))
        assert orb.state == OrbState.OBSERVED
        assert orb.results.fetched_at is not None

    def test_imported_without_results_is_published(self):
        assert create_imported_orb(_spec()).state == OrbState.PUBLISHED

    def test_results_only_on_observed(self):
        with pytest.raises(ValueError):
            create_orb(OrbState.DRAFT, _spec(), results=OrbResults(success_score=50))

    def test_ids_are_unique(self):
        assert create_user_orb(_spec()).id != create_user_orb(_spec()).id


class TestTransitions:
    def test_full_forward_path(self):
        suggested = create_suggested_orb(_spec(), None, _intent())
        draft = convert_suggested_to_draft(suggested)
        published = publish_draft(draft)
        observed = attach_results(published, OrbResults(success_score=64))

        assert observed.state == OrbState.OBSERVED
        assert observed.results.success_score == 64
        assert observed.results.fetched_at is not None
        assert suggested.state == OrbState.SUGGESTED

    def test_draft_to_draft_allowed(self):
        assert can_transition(OrbState.DRAFT, OrbState.DRAFT)

    @pytest.mark.parametrize("current,target", [
        (OrbState.DRAFT, OrbState.OBSERVED),
        (OrbState.PUBLISHED, OrbState.DRAFT),
        (OrbState.OBSERVED, OrbState.PUBLISHED),
        (OrbState.SUGGESTED, OrbState.PUBLISHED),
    ])
    def test_invalid_transitions(self, current, target):
        assert not can_transition(current, target)

    def test_draft_to_observed_raises(self):
        draft = create_user_orb(_spec())
        with pytest.raises(InvalidStateTransition) as exc_info:
            transition(draft, OrbState.OBSERVED)
        assert exc_info.value.current_state == OrbState.DRAFT
        assert exc_info.value.target_state == OrbState.OBSERVED

    def test_results_cannot_ride_on_other_transitions(self):
        draft = create_user_orb(_spec())
        with pytest.raises(ValueError):
            transition(draft, OrbState.DRAFT, results=OrbResults(success_score=90))
        with pytest.raises(ValueError):
            transition(draft, OrbState.PUBLISHED, results=OrbResults(success_score=90))
        assert draft.results is None

    def test_lineage_and_raw_are_not_transition_parameters(self):
        draft = create_user_orb(_spec())
        with pytest.raises(TypeError):
            transition(draft, OrbState.DRAFT, parent_orb_id="x")
        with pytest.raises(TypeError):
            transition(draft, OrbState.PUBLISHED, raw=None)

    def test_spec_changes_only_on_draft_saves(self):
        published = publish_draft(create_user_orb(_spec()))
        with pytest.raises(ValueError):
            transition(published, OrbState.OBSERVED, spec=_spec(notes="late"), results=OrbResults(success_score=60))

        draft = create_user_orb(_spec(notes="v1"))
        saved = transition(draft, OrbState.DRAFT, spec=_spec(notes="v2"))
        assert saved.spec.notes == "v2"
        assert saved.id == draft.id
        assert saved.raw == draft.raw

    def test_observing_requires_results(self):
        published = publish_draft(create_user_orb(_spec()))
        with pytest.raises(ValueError):
            transition(published, OrbState.OBSERVED)

    def test_attach_results_twice_raises(self):
        published = publish_draft(create_user_orb(_spec()))
        observed = attach_results(published, OrbResults(success_score=60))
        with pytest.raises(InvalidStateTransition):
            attach_results(observed, OrbResults(success_score=70))

    def test_update_results_keeps_state_and_fetched_at(self):
        observed = attach_results(publish_draft(create_user_orb(_spec())), OrbResults(success_score=60))
        refreshed = update_results(observed, OrbResults(success_score=75))

        assert refreshed.state == OrbState.OBSERVED
        assert refreshed.results.success_score == 75
        assert refreshed.results.fetched_at == observed.results.fetched_at

    def test_update_draft_merges_spec(self):
        draft = create_user_orb(_spec(notes="v1"))
        updated = update_draft(draft, {"notes": "v2"})
        assert updated.spec.notes == "v2"
        assert updated.spec.platform == "tiktok"
        assert draft.spec.notes == "v1"

    def test_update_published_raises(self):
        published = publish_draft(create_user_orb(_spec()))
        with pytest.raises(InvalidStateTransition):
            update_draft(published, {"notes": "late"})


class TestLineage:
    def _family(self):
        root = create_user_orb(_spec())
        child = create_suggested_orb(_spec(), root.id, _intent())
        grandchild = create_suggested_orb(_spec(), child.id, _intent("voiceover"))
        return root, child, grandchild

    def test_lineage_oldest_first(self):
        root, child, grandchild = self._family()
        lineage = get_orb_lineage(grandchild.id, [grandchild, root, child])
        assert [o.id for o in lineage] == [root.id, child.id, grandchild.id]

    def test_lineage_unknown_orb(self):
        with pytest.raises(OrbNotFound):
            get_orb_lineage("missing", [])

    def test_descendants(self):
        root, child, grandchild = self._family()
        descendants = get_orb_descendants(root.id, [root, child, grandchild])
        assert {o.id for o in descendants} == {child.id, grandchild.id}

    def test_is_descendant_of(self):
        root, child, grandchild = self._family()
        orbs = [root, child, grandchild]
        assert is_descendant_of(grandchild.id, root.id, orbs)
        assert not is_descendant_of(root.id, grandchild.id, orbs)
        assert not is_descendant_of("missing", root.id, orbs)

    def test_ai_suggestions(self):
        root, child, grandchild = self._family()
        assert len(get_ai_suggestions([root, child, grandchild])) == 2


class TestValidation:
    def test_suggested_without_intent(self):
        orb = create_orb(OrbState.SUGGESTED, _spec())
        assert "Suggested orbs must have learning_intent" in validate_orb(orb)

    def test_observed_without_results(self):
        orb = create_orb(OrbState.OBSERVED, _spec())
        assert "Observed orbs must have results" in validate_orb(orb)

    def test_missing_platform(self):
        orb = create_user_orb(_spec(platform=""))
        assert "Spec missing platform" in validate_orb(orb)


class TestLearningRecord:
    def test_records_delta(self):
        suggestion = create_suggested_orb(_spec(), None, _intent())
        suggestion = suggestion.model_copy(update={
            "prediction": OrbPrediction(score=60, confidence=50, method=PredictionMethod.RAG)
        })
        observed = create_imported_orb(_spec(), results=OrbResults(success_score=72))

        record = create_learning_record(suggestion, observed)
        assert record.experiment_lever == "subtitles"
        assert record.delta == pytest.approx(12)

    def test_unscored_suggestion_uses_default(self):
        suggestion = create_suggested_orb(_spec(), None, _intent())
        observed = create_imported_orb(_spec(), results=OrbResults(success_score=40))
        assert create_learning_record(suggestion, observed).predicted_score == 50

    def test_requires_intent_and_results(self):
        user = create_user_orb(_spec())
        observed = create_imported_orb(_spec(), results=OrbResults(success_score=40))
        assert create_learning_record(user, observed) is None
        suggestion = create_suggested_orb(_spec(), None, _intent())
        assert create_learning_record(suggestion, user) is None


class TestLevers:
    def test_get_lever(self):
        assert get_lever("subtitles").facet_group == "text_features"
        assert get_lever("nope") is None
