"""
Tests for contrastive trait analysis.

The subtitle_neighbors fixture: five ads with subtitles scoring 80 and five
without scoring 55, all at similarity 0.8.
"""

import pytest

from orbcast.core.models import Recommendation
from orbcast.services.rag.contrastive import (
    SCOPE_ALL,
    SCOPE_QUERY,
    analyze_all_trait_effects,
    analyze_trait_effect,
    calculate_trait_confidence,
    compute_lift,
    get_recommendation,
    get_top_impactful_traits,
    get_traits_needing_more_data,
    perform_contrastive_analysis,
    split_by_trait,
)


class TestSplitAndLift:
    def test_split_partitions(self, subtitle_neighbors):
        with_group, without_group = split_by_trait(subtitle_neighbors, "subtitles", True)
        assert len(with_group) == 5
        assert len(without_group) == 5
        assert all(n.orb.traits["subtitles"] is True for n in with_group)

    def test_split_by_string_value(self, make_neighbor):
        neighbors = [
            make_neighbor("a", 60, {"hook": "curiosity"}),
            make_neighbor("b", 60, {"hook": "shock"}),
            make_neighbor("c", 60),
        ]
        with_group, without_group = split_by_trait(neighbors, "hook", "curiosity")
        assert [n.orb.id for n in with_group] == ["a"]
        assert [n.orb.id for n in without_group] == ["b", "c"]

    def test_compute_lift(self, subtitle_neighbors):
        with_group, without_group = split_by_trait(subtitle_neighbors, "subtitles", True)
        lift, avg_with, avg_without = compute_lift(with_group, without_group)
        assert lift == pytest.approx(25)
        assert avg_with == pytest.approx(80)
        assert avg_without == pytest.approx(55)


class TestTraitConfidence:
    def test_balanced_groups(self, subtitle_neighbors):
        with_group, without_group = split_by_trait(subtitle_neighbors, "subtitles", True)
        assert calculate_trait_confidence(with_group, without_group, 3) == 40

    def test_small_groups(self, make_neighbor):
        with_group = [make_neighbor(f"w{i}", 70) for i in range(2)]
        without_group = [make_neighbor(f"o{i}", 50) for i in range(2)]
        assert calculate_trait_confidence(with_group, without_group, 3) == 13


class TestRecommendation:
    @pytest.mark.parametrize("lift,confidence,expected", [
        (20, 30, Recommendation.TEST),
        (2, 80, Recommendation.NEUTRAL),
        (20, 80, Recommendation.USE),
        (-20, 80, Recommendation.AVOID),
    ])
    def test_recommendations(self, lift, confidence, expected):
        assert get_recommendation(lift, confidence, 5.0) == expected


class TestAnalyzeTraitEffect:
    def test_significant_positive_effect(self, subtitle_neighbors):
        effect = analyze_trait_effect(subtitle_neighbors, "subtitles", True)

        assert effect.lift == pytest.approx(25)
        assert effect.lift_percent == pytest.approx(25 / 55 * 100)
        assert effect.confidence == 40
        assert effect.n_with == 5
        assert effect.n_without == 5
        assert effect.is_significant
        assert effect.recommendation == Recommendation.USE

    def test_small_group_is_insufficient(self, make_neighbor):
        neighbors = (
            [make_neighbor(f"w{i}", 90, {"ugc": True}) for i in range(2)]
            + [make_neighbor(f"o{i}", 40, {"ugc": False}) for i in range(8)]
        )
        effect = analyze_trait_effect(neighbors, "ugc", True)

        assert effect.lift == 0
        assert effect.confidence == 10
        assert not effect.is_significant
        assert effect.recommendation == Recommendation.TEST

    def test_lift_is_clamped(self, make_neighbor):
        neighbors = (
            [make_neighbor(f"w{i}", 100, {"ugc": True}) for i in range(5)]
            + [make_neighbor(f"o{i}", 20, {"ugc": False}) for i in range(5)]
        )
        assert analyze_trait_effect(neighbors, "ugc", True).lift == 50

    def test_unscored_neighbors_do_not_count(self, subtitle_neighbors, make_neighbor):
        neighbors = subtitle_neighbors + [make_neighbor("x", None, {"subtitles": True})]
        effect = analyze_trait_effect(neighbors, "subtitles", True)
        assert effect.n_with == 5


class TestContrastiveAnalysis:
    def test_all_scope(self, subtitle_neighbors, make_orb):
        effects = analyze_all_trait_effects(subtitle_neighbors)
        assert [(e.trait, e.trait_value) for e in effects] == [("subtitles", True), ("platform", "tiktok")]

        analysis = perform_contrastive_analysis(make_orb("q"), subtitle_neighbors, scope=SCOPE_ALL)
        assert [e.trait for e in analysis.top_positive] == ["subtitles"]
        assert analysis.top_negative == []
        assert [e.trait for e in analysis.low_confidence] == ["platform"]
        assert analysis.total_neighbors == 10
        assert analysis.avg_similarity == pytest.approx(0.8)

    def test_query_scope(self, subtitle_neighbors, make_orb):
        query = make_orb("q", traits={"subtitles": False, "hook": ""})
        analysis = perform_contrastive_analysis(query, subtitle_neighbors, scope=SCOPE_QUERY)

        traits = [(e.trait, e.trait_value) for e in analysis.trait_effects]
        assert traits == [("subtitles", False), ("platform", "tiktok")]
        assert analysis.trait_effects[0].lift == pytest.approx(-25)
        assert [e.trait for e in analysis.top_negative] == ["subtitles"]

    def test_unknown_scope(self, subtitle_neighbors, make_orb):
        with pytest.raises(ValueError):
            perform_contrastive_analysis(make_orb("q"), subtitle_neighbors, scope="everything")

    def test_empty_neighbors(self, make_orb):
        analysis = perform_contrastive_analysis(make_orb("q"), [])
        assert analysis.trait_effects == []
        assert analysis.avg_similarity == 0.0

    def test_helpers(self, subtitle_neighbors, make_orb):
        analysis = perform_contrastive_analysis(make_orb("q"), subtitle_neighbors)
        assert [e.trait for e in get_top_impactful_traits(analysis)] == ["subtitles"]
        assert [e.trait for e in get_traits_needing_more_data(analysis)] == ["platform"]
