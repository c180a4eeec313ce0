"""
Tests for facet derivation and facet set utilities.
"""

from orbcast.core.models import FacetSet
from orbcast.services.rag.facets import (
    count_matching_facets,
    derive_facets,
    flatten_facets,
    get_differing_facet_groups,
    has_facet,
)


class TestDeriveFacets:
    def test_full_payload(self):
        facets = derive_facets({
            "platform": "TikTok",
            "aspectRatio": "9:16",
            "editingStyle": "fast_cuts",
            "mediaType": "video",
            "colorScheme": "vibrant",
            "hasVoiceover": True,
            "musicType": "upbeat",
            "hookType": "curiosity",
            "hasSubtitles": True,
            "isUGCStyle": True,
            "emotionalTone": "exciting",
            "logoTiming": "outro",
            "cta": "shop_now",
        })

        assert facets.platform_placement == ["tiktok", "9:16"]
        assert facets.media_format == ["live_action", "video"]
        assert facets.visual_style == ["bright_palette"]
        assert facets.audio_voice == ["voiceover", "music", "energetic"]
        assert facets.content_hook == ["curiosity", "hook_present"]
        assert facets.text_features == ["subtitles"]
        assert facets.talent_face == ["ugc_creator"]
        assert facets.sentiment == ["upbeat"]
        assert facets.brand == ["late_reveal"]
        assert facets.cta == ["shop_now"]

    def test_snake_case_keys(self):
        facets = derive_facets({"hook_type": "story", "has_subtitles": True, "media_type": "photo"})
        assert "storytelling" in facets.content_hook
        assert facets.text_features == ["subtitles"]
        assert facets.media_format == ["static"]

    def test_unknown_values_are_dropped(self):
        facets = derive_facets({"hookType": "mystery", "colorScheme": "plaid"})
        assert facets.content_hook == ["hook_present"]
        assert facets.visual_style == []

    def test_explicit_no_hook(self):
        assert derive_facets({"hookPresent": False}).content_hook == []

    def test_no_music_is_not_music(self):
        assert derive_facets({"musicType": "no_music"}).audio_voice == []

    def test_animated_not_duplicated(self):
        facets = derive_facets({"editingStyle": "animated", "isAnimated": True})
        assert facets.media_format == ["animated"]


class TestFacetUtilities:
    def test_flatten_in_group_order(self):
        facets = FacetSet(cta=["shop_now"], platform_placement=["tiktok"])
        assert flatten_facets(facets) == ["platform_placement:tiktok", "cta:shop_now"]

    def test_has_facet(self):
        facets = FacetSet(text_features=["subtitles"])
        assert has_facet(facets, "text_features", "subtitles")
        assert not has_facet(facets, "text_features", "text_overlay")
        assert not has_facet(facets, "not_a_group", "subtitles")

    def test_matching_and_differing(self):
        a = FacetSet(platform_placement=["tiktok"], text_features=["subtitles"])
        b = FacetSet(platform_placement=["tiktok"], text_features=["text_overlay"])

        assert count_matching_facets(a, b) == 1
        assert get_differing_facet_groups(a, b) == ["text_features"]
