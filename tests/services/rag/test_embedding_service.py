"""
Tests for EmbeddingService: canonical texts, provider fallback and caching.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from orbcast.core.config import SafetyConfig
from orbcast.core import embeddings
from orbcast.core.embeddings import EmbeddingProviderError, GeminiEmbeddingProvider, fallback_embedding, is_unit_vector
from orbcast.core.models import EmbeddingSet, FacetSet, OrbSpec
from orbcast.services.rag.embedding_service import (
    EmbeddingService,
    build_canonical_text,
    build_creative_summary,
    build_script_summary,
    build_visual_summary,
    compute_multi_embedding_similarity,
    create_empty_embedding_set,
    is_valid_embedding_set,
)
from orbcast.services.rag.orb_lifecycle import create_user_orb


class TestCanonicalText:
    def test_known_keys_in_order_then_alphabetical(self, make_orb):
        orb = make_orb("a", traits={"zeta": "X", "ugc": True, "hook": "Curiosity", "alpha": 3}, platform="TikTok")
        assert build_canonical_text(orb) == (
            "platform=tiktok\nhook=curiosity\nugc=true\nalpha=3\nzeta=x"
        )

    def test_excludes_volatile_and_empty(self, make_orb):
        orb = make_orb("a", traits={"id": "abc", "hook": "", "subtitles": False})
        assert build_canonical_text(orb) == "platform=tiktok\nsubtitles=false"

    def test_same_traits_same_text(self, make_orb):
        a = make_orb("a", traits={"hook": "curiosity", "ugc": True})
        b = make_orb("b", traits={"ugc": True, "hook": "curiosity"})
        assert build_canonical_text(a) == build_canonical_text(b)


class TestSummaries:
    def test_creative_summary(self):
        text = build_creative_summary(
            {"description": "Dog Toy Demo", "hookType": "Curiosity", "claims": ["Durable", "Safe"]},
            FacetSet(content_hook=["curiosity"]),
        )
        assert "description=dog toy demo" in text
        assert "hook=curiosity" in text
        assert "claims=durable safe" in text
        assert "content_hook=curiosity" in text

    def test_script_summary(self):
        text = build_script_summary({
            "script": "Meet the toy",
            "on_screen_text_events": [{"text": "50% OFF"}, {"other": 1}],
            "cta": "shop_now",
        })
        assert text.splitlines() == ["script=meet the toy", "text_overlay=50% off", "cta_type=shop_now"]

    def test_visual_summary(self):
        text = build_visual_summary({
            "colorScheme": "Vibrant",
            "object_tracks": [{"label": "Dog"}, {"label": "Dog"}, {"label": "Ball"}],
            "facePresence": True,
        })
        assert "color=vibrant" in text
        assert "objects=dog,ball" in text
        assert "face_present=true" in text

    def test_empty_payload(self):
        assert build_creative_summary({}) == ""
        assert build_script_summary(None) == ""


class TestEmbeddingSetHelpers:
    def test_multi_similarity_weights(self):
        a = EmbeddingSet(creative=[1.0, 0.0], script=[1.0, 0.0], visual=[1.0, 0.0])
        b = EmbeddingSet(creative=[1.0, 0.0], script=[0.0, 1.0], visual=[1.0, 0.0])
        result = compute_multi_embedding_similarity(a, b)
        assert result["script_similarity"] == pytest.approx(0.0)
        assert result["weighted_similarity"] == pytest.approx(0.7)

    def test_validity(self):
        assert is_valid_embedding_set(create_empty_embedding_set(4))
        assert not is_valid_embedding_set(EmbeddingSet())


class TestEmbedText:
    @pytest.mark.asyncio
    async def test_no_provider_uses_fallback_without_caching(self):
        service = EmbeddingService()
        vector = await service.embed_text("platform=tiktok")
        assert vector == fallback_embedding("platform=tiktok")
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_empty_text_is_embedded_as_placeholder(self):
        service = EmbeddingService()
        vector = await service.embed_text("")
        assert is_unit_vector(vector)

    @pytest.mark.asyncio
    async def test_provider_result_is_cached(self):
        provider = AsyncMock()
        provider.embed.return_value = [0.6, 0.8]
        service = EmbeddingService(provider=provider)

        assert await service.embed_text("hello") == [0.6, 0.8]
        assert await service.embed_text("hello") == [0.6, 0.8]
        provider.embed.assert_awaited_once_with("hello")

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self):
        provider = AsyncMock()
        provider.embed.side_effect = EmbeddingProviderError("down")
        service = EmbeddingService(provider=provider)

        assert await service.embed_text("hello") == fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_provider_timeout_falls_back(self):
        class SlowProvider:
            async def embed(self, text):
                await asyncio.sleep(1)
                return [1.0]

        service = EmbeddingService(
            provider=SlowProvider(), safety_config=SafetyConfig(embedding_timeout_ms=10)
        )
        assert await service.embed_text("hello") == fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_gemini_retries_finish_within_timeout(self):
        with patch.object(embeddings.genai, "Client", MagicMock()):
            provider = GeminiEmbeddingProvider(api_key="test-key")
        response = MagicMock()
        response.embeddings = [MagicMock(values=[0.6, 0.8])]
        provider.client.aio.models.embed_content = AsyncMock(
            side_effect=[RuntimeError("503"), RuntimeError("503"), response]
        )

        service = EmbeddingService(provider=provider)
        assert await service.embed_text("hello") == [0.6, 0.8]
        assert provider.client.aio.models.embed_content.await_count == 3


class TestOrbEmbeddings:
    @pytest.mark.asyncio
    async def test_generate_orb_embedding(self, make_orb):
        service = EmbeddingService()
        orb = make_orb("a", traits={"hook": "curiosity"})
        embedded = await service.generate_orb_embedding(orb)

        assert embedded.canonical_text == "platform=tiktok\nhook=curiosity"
        assert len(embedded.embedding) == 384
        assert orb.embedding is None

    @pytest.mark.asyncio
    async def test_batch_preserves_order(self, make_orb):
        service = EmbeddingService()
        orbs = [make_orb(f"o{i}", traits={"hook": f"h{i}"}) for i in range(7)]
        embedded = await service.generate_orb_embeddings_batch(orbs, batch_size=3, delay_ms=0)
        assert [o.id for o in embedded] == [o.id for o in orbs]
        assert all(o.embedding for o in embedded)

    @pytest.mark.asyncio
    async def test_populate_orb_embeddings(self):
        service = EmbeddingService()
        orb = create_user_orb(OrbSpec(platform="tiktok"))
        orb.raw.analysis_json = {"hookType": "curiosity", "script": "hello", "colorScheme": "warm"}

        populated = await service.populate_orb_embeddings(orb)
        assert populated.derived.canonical_texts.creative == "hook=curiosity"
        assert is_valid_embedding_set(populated.derived.embeddings)
        assert not is_valid_embedding_set(orb.derived.embeddings)
