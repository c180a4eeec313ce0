"""
Tests for suggested orbs: triggers, proven core, lever choice and scoring.
"""

from unittest.mock import AsyncMock

import pytest

from orbcast.core.config import EngineConfig, FeatureFlags
from orbcast.core.models import (
    LearningIntent,
    OrbSpec,
    OrbState,
    ProvenCore,
    SuggestionTrigger,
    TraitEffect,
)
from orbcast.services.rag.orb_lifecycle import (
    EXPERIMENTAL_LEVERS,
    create_suggested_orb,
    create_user_orb,
    get_lever,
    publish_draft,
)
from orbcast.services.rag.suggestions import (
    SuggestionService,
    explain_suggestion,
    extract_proven_core,
    generate_suggested_spec,
    select_experimental_lever,
    should_generate_suggestions,
)

ENABLED = FeatureFlags(enable_suggested_orbs=True)


def low_confidence(trait, confidence, lift=0.0, n_with=2, n_without=1):
    return TraitEffect(trait=trait, lift=lift, confidence=confidence, n_with=n_with, n_without=n_without)


@pytest.fixture
def parent():
    return create_user_orb(OrbSpec(platform="tiktok"))


class TestShouldGenerate:
    def test_disabled(self, parent):
        decision = should_generate_suggestions(parent, 20, 0)
        assert not decision.should_generate
        assert decision.reason == "Feature disabled"

    def test_max_reached(self, parent):
        decision = should_generate_suggestions(parent, 20, 3, ENABLED)
        assert decision.reason == "Max suggestions reached"

    def test_confidence_already_high(self, parent):
        decision = should_generate_suggestions(parent, 85, 0, ENABLED)
        assert not decision.should_generate
        assert decision.reason == "Confidence already high"

    def test_low_confidence(self, parent):
        decision = should_generate_suggestions(parent, 45, 0, ENABLED)
        assert decision.should_generate
        assert decision.trigger == SuggestionTrigger.LOW_CONFIDENCE
        assert decision.reason == "Confidence is 45%"

    def test_new_draft(self, parent):
        decision = should_generate_suggestions(parent, 70, 0, ENABLED)
        assert decision.trigger == SuggestionTrigger.NEW_ORB_ADDED

    def test_published_orb_with_moderate_confidence(self, parent):
        decision = should_generate_suggestions(publish_draft(parent), 70, 0, ENABLED)
        assert not decision.should_generate
        assert decision.reason == "No trigger conditions met"


class TestProvenCore:
    def test_facets_shared_by_half_of_top_neighbors(self, make_neighbor):
        neighbors = [
            make_neighbor(f"w{i}", 80, {"subtitles": True, "hook": "curiosity", "brand_late_reveal": True})
            for i in range(3)
        ] + [
            make_neighbor(f"o{i}", 60, {"subtitles": False, "hook": "shock"})
            for i in range(2)
        ]
        effects = [
            TraitEffect(trait="subtitles", lift=20, confidence=70, is_significant=True),
            TraitEffect(trait="hook", lift=10, confidence=50, is_significant=True),
            TraitEffect(trait="ugc", lift=30, confidence=80, is_significant=False),
        ]

        core = extract_proven_core(neighbors, effects)

        assert core.facets == {
            "platform_placement": ["tiktok"],
            "content_hook": ["curiosity"],
            "text_features": ["subtitles"],
            "brand": ["late_reveal"],
        }
        assert core.traits == ["subtitles"]
        assert core.avg_score == pytest.approx(72.0)

    def test_no_neighbors(self):
        core = extract_proven_core([], [TraitEffect(trait="ugc", lift=8, confidence=90, is_significant=True)])
        assert core.traits == ["ugc"]
        assert core.facets == {}
        assert core.avg_score == 0.0


class TestLeverSelection:
    def test_defaults_pick_first_lever(self):
        assert select_experimental_lever([], []).id == "brand_timing"

    def test_skips_used_levers(self):
        assert select_experimental_lever([], ["brand_timing"]).id == "voiceover"

    def test_prefers_uncertain_traits(self):
        lever = select_experimental_lever([low_confidence("subtitles", 10, lift=20)], [])

        assert lever.id == "subtitles"
        assert lever.uncertainty == 90
        assert lever.potential_impact == 40
        assert lever.sample_size == 3

    def test_matches_trait_names_containing_lever(self):
        lever = select_experimental_lever([low_confidence("voiceover_style", 5)], [])
        assert lever.id == "voiceover"

    def test_confident_traits_are_not_experiments(self):
        used = [lever.id for lever in EXPERIMENTAL_LEVERS if lever.id != "subtitles"]
        assert select_experimental_lever([low_confidence("subtitles", 70)], used) is None


class TestSuggestedSpec:
    def test_boolean_lever(self):
        core = ProvenCore(facets={"text_features": ["subtitles"]})
        spec = generate_suggested_spec(OrbSpec(platform="tiktok"), core, get_lever("voiceover"))

        assert spec.facets.audio_voice == ["voiceover"]
        assert spec.facets.text_features == ["subtitles"]
        assert spec.notes == "Testing: Voiceover (Voiceover on vs off)"
        assert spec.platform == "tiktok"

    def test_value_lever(self):
        spec = generate_suggested_spec(OrbSpec(platform="meta"), ProvenCore(), get_lever("animation"))
        assert spec.facets.media_format == ["animated"]

    def test_does_not_duplicate(self):
        core = ProvenCore(facets={"brand": ["late_reveal"]})
        spec = generate_suggested_spec(OrbSpec(platform="meta"), core, get_lever("brand_timing"))
        assert spec.facets.brand == ["late_reveal"]


class TestExplainSuggestion:
    def test_with_intent(self):
        suggestion = create_suggested_orb(
            OrbSpec(platform="tiktok"),
            None,
            LearningIntent(experiment_lever="voiceover", reason="Testing Voiceover"),
        )
        explanation = explain_suggestion(suggestion, ProvenCore(traits=["subtitles"], avg_score=75))

        assert explanation["whats_proven"] == [
            "Top performers average 75% success",
            "subtitles correlates with higher performance",
        ]
        assert explanation["whats_tested"] == "Voiceover: Voiceover on vs off"
        assert explanation["why_suggested"] == "Testing Voiceover"

    def test_without_intent(self, parent):
        explanation = explain_suggestion(parent, ProvenCore())
        assert explanation["whats_tested"] == "Unknown"


class TestSuggestionService:
    @pytest.mark.asyncio
    async def test_generates_one_lever_per_suggestion(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 15), constant_embeddings)

        suggestions = await service.generate_suggested_orbs(parent)

        # voiceover and subtitles are uncertain in the history; brand timing is the first default
        assert [s.learning_intent.experiment_lever for s in suggestions] == [
            "voiceover", "subtitles", "brand_timing"
        ]
        for suggestion in suggestions:
            assert suggestion.state == OrbState.SUGGESTED
            assert suggestion.parent_orb_id == parent.id
        first = suggestions[0]
        assert first.learning_intent.reason == (
            "Testing Voiceover: Voiceover on vs off. Current uncertainty: 85%"
        )
        assert first.spec.facets.audio_voice == ["voiceover"]
        assert first.spec.facets.content_hook == ["curiosity"]
        assert first.spec.facets.talent_face == ["ugc_creator"]

    @pytest.mark.asyncio
    async def test_respects_max(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 15), constant_embeddings)
        assert len(await service.generate_suggested_orbs(parent, max_suggestions=1)) == 1

    @pytest.mark.asyncio
    async def test_flag_limit(self, history_store, constant_embeddings, parent):
        config = EngineConfig(flags=FeatureFlags(max_suggestions_per_trigger=2))
        service = SuggestionService(history_store([70] * 15), constant_embeddings, config=config)
        assert len(await service.generate_suggested_orbs(parent, max_suggestions=5)) == 2

    @pytest.mark.asyncio
    async def test_thin_history(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 4), constant_embeddings)
        assert await service.generate_suggested_orbs(parent) == []

    @pytest.mark.asyncio
    async def test_scores_suggestion(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 15), constant_embeddings)
        suggestion = (await service.generate_suggested_orbs(parent, max_suggestions=1))[0]

        score = await service.score_suggested_orb(suggestion)

        assert score.predicted_score == pytest.approx(70.0)
        assert 0 < score.confidence <= 100
        assert score.neighbor_count == 15
        assert score.explanation == "Based on 15 similar ads"
        assert not score.is_fallback

    @pytest.mark.asyncio
    async def test_score_with_thin_history(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 3), constant_embeddings)
        score = await service.score_suggested_orb(parent)

        assert score.predicted_score == 50.0
        assert score.confidence == 30.0
        assert score.is_fallback

    @pytest.mark.asyncio
    async def test_score_never_raises(self, history_store, constant_embeddings, parent):
        service = SuggestionService(history_store([70] * 15), constant_embeddings)
        service.retrieval.retrieve_similar_ads_with_results = AsyncMock(side_effect=RuntimeError("boom"))

        score = await service.score_suggested_orb(parent)

        assert (score.predicted_score, score.confidence) == (50.0, 0.0)
        assert score.explanation == "Unable to analyze similar ads"
