"""
Tests for the embedding infrastructure: deterministic fallback vectors,
vector helpers, the TTL cache and the Gemini provider wrapper.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from orbcast.core import embeddings
from orbcast.core.embeddings import (
    FALLBACK_DIM,
    EmbeddingCache,
    EmbeddingProviderError,
    FallbackEmbeddingProvider,
    GeminiEmbeddingProvider,
    cosine_similarity,
    fallback_embedding,
    is_unit_vector,
)


class TestFallbackEmbedding:
    def test_dimensions(self):
        assert len(fallback_embedding("platform=tiktok")) == FALLBACK_DIM == 384

    def test_unit_length(self):
        assert is_unit_vector(fallback_embedding("platform=tiktok\nhook=curiosity"))

    def test_deterministic(self):
        text = "platform=tiktok\nugc=true"
        assert fallback_embedding(text) == fallback_embedding(text)

    def test_different_texts_differ(self):
        assert fallback_embedding("platform=tiktok") != fallback_embedding("platform=youtube")

    def test_case_insensitive(self):
        assert fallback_embedding("Platform=TikTok") == fallback_embedding("platform=tiktok")

    def test_custom_dimensions(self):
        vec = fallback_embedding("hello world", dimensions=64)
        assert len(vec) == 64
        assert is_unit_vector(vec)

    def test_empty_text_is_zero_vector(self):
        assert all(v == 0 for v in fallback_embedding(""))

    @pytest.mark.asyncio
    async def test_provider_matches_function(self):
        provider = FallbackEmbeddingProvider()
        assert await provider.embed("ugc=true") == fallback_embedding("ugc=true")


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError, match="mismatch"):
            cosine_similarity([1.0], [1.0, 0.0])


class TestEmbeddingCache:
    def test_set_and_get(self):
        cache = EmbeddingCache()
        cache.set("text", [0.1, 0.2])
        assert cache.get("text") == [0.1, 0.2]
        assert cache.get("other") is None
        assert len(cache) == 1

    def test_expired_entry_is_dropped(self):
        cache = EmbeddingCache(ttl_ms=1000)
        with patch.object(embeddings.time, "monotonic", return_value=100.0):
            cache.set("text", [0.1])
        with patch.object(embeddings.time, "monotonic", return_value=102.0):
            assert cache.get("text") is None
        assert len(cache) == 0

    def test_clear(self):
        cache = EmbeddingCache()
        cache.set("a", [1.0])
        cache.clear()
        assert cache.get("a") is None


class TestGeminiEmbeddingProvider:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_GEMINI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            GeminiEmbeddingProvider()

    @pytest.mark.asyncio
    async def test_embed_returns_first_vector(self):
        with patch.object(embeddings.genai, "Client", MagicMock()):
            provider = GeminiEmbeddingProvider(api_key="test-key")
        provider._embed_batch = AsyncMock(return_value=[[0.6, 0.8]])

        assert await provider.embed("hello") == [0.6, 0.8]
        provider._embed_batch.assert_awaited_once_with(["hello"])

    @pytest.mark.asyncio
    async def test_failure_wrapped(self):
        with patch.object(embeddings.genai, "Client", MagicMock()):
            provider = GeminiEmbeddingProvider(api_key="test-key")
        provider._embed_batch = AsyncMock(side_effect=RuntimeError("quota exceeded"))

        with pytest.raises(EmbeddingProviderError, match="quota exceeded"):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self):
        with patch.object(embeddings.genai, "Client", MagicMock()):
            provider = GeminiEmbeddingProvider(api_key="test-key")
        provider._embed_batch = AsyncMock(return_value=[[1.0]])

        with pytest.raises(EmbeddingProviderError, match="Expected 2"):
            await provider.embed_many(["a", "b"])

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        with patch.object(embeddings.genai, "Client", MagicMock()):
            provider = GeminiEmbeddingProvider(api_key="test-key")
        assert await provider.embed_many([]) == []
