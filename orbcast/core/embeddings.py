"""
Embedding Infrastructure for orbcast

Provides text embedding providers: a Gemini-backed provider for real
embeddings and a deterministic hashing fallback that is always available.
Also holds vector helpers and a small TTL cache keyed by text hash.
"""

import os
import re
import math
import time
import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np
from google import genai
from google.genai import types
from tenacity import retry, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

# Gemini embedding model and dimensions
EMBED_MODEL = "gemini-embedding-001"
EMBED_DIM = 384

# Fallback embedding dimensionality
FALLBACK_DIM = 384


class EmbeddingProviderError(Exception):
    """Raised when an embedding provider cannot produce a vector."""


class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector."""

    async def embed(self, text: str) -> List[float]: ...


# =============================================================================
# Deterministic fallback
# =============================================================================

def _string_hash(value: str) -> int:
    """31-multiplier rolling hash, wrapped to a signed 32-bit integer."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return h


def fallback_embedding(text: str, dimensions: int = FALLBACK_DIM) -> List[float]:
    """
    Build a deterministic unit vector from text.

    Character-position sine terms plus hashed unigram (weight 1.0) and bigram
    (weight 0.5) contributions, then L2-normalized. Identical text always
    yields the identical vector.

    Args:
        text: Text to embed
        dimensions: Output dimensionality

    Returns:
        List of `dimensions` floats (unit length unless text is empty)
    """
    vec = np.zeros(dimensions, dtype=float)
    chars = text.lower()

    for i, ch in enumerate(chars):
        code = ord(ch)
        vec[(code * (i + 1)) % dimensions] += math.sin(code * (i + 1) * 0.1)

    words = [w for w in re.split(r"[=\s]+", chars) if w]
    for i, word in enumerate(words):
        vec[abs(_string_hash(word)) % dimensions] += 1.0
        if i < len(words) - 1:
            bigram = f"{word}_{words[i + 1]}"
            vec[abs(_string_hash(bigram)) % dimensions] += 0.5

    magnitude = float(np.linalg.norm(vec))
    if magnitude > 0:
        vec = vec / magnitude
    return vec.tolist()


class FallbackEmbeddingProvider:
    """Provider that only ever uses the deterministic fallback."""

    def __init__(self, dimensions: int = FALLBACK_DIM):
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        return fallback_embedding(text, self.dimensions)


# =============================================================================
# Gemini provider
# =============================================================================

@dataclass
class GeminiEmbeddingProvider:
    """
    Text embedding provider using the Gemini API.

    Attributes:
        api_key: API key (defaults to GEMINI_API_KEY env var)
        model: Embedding model name
        dimensions: Output dimensionality requested from the API
        task_type: Gemini task type used for document embeddings
    """
    api_key: Optional[str] = None
    model: str = EMBED_MODEL
    dimensions: int = EMBED_DIM
    task_type: str = "RETRIEVAL_DOCUMENT"

    def __post_init__(self):
        """Initialize API client"""
        if self.api_key is None:
            self.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_GEMINI_API_KEY")

        if not self.api_key:
            raise ValueError("GEMINI_API_KEY environment variable not set")

        self.client = genai.Client(api_key=self.api_key)

    # Backoff (0.25s, 0.5s) fits inside the default 2000ms embedding timeout
    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.25, max=1))
    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        result = await self.client.aio.models.embed_content(
            model=self.model,
            contents=texts,
            config=types.EmbedContentConfig(
                task_type=self.task_type,
                output_dimensionality=self.dimensions,
            ),
        )
        return [list(e.values) for e in result.embeddings]

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text string.

        Raises:
            EmbeddingProviderError: If the API fails after retries
        """
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """
        Embed multiple texts in one request.

        Raises:
            EmbeddingProviderError: If the API fails after retries
        """
        if not texts:
            return []
        try:
            vectors = await self._embed_batch(texts)
        except Exception as e:
            logger.error(f"Gemini embedding failed after retries: {e}")
            raise EmbeddingProviderError(str(e)) from e

        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}"
            )
        return vectors


# =============================================================================
# Vector helpers
# =============================================================================

def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity in [-1, 1]; 0.0 if either vector has zero magnitude

    Raises:
        ValueError: On dimension mismatch
    """
    if len(vec1) != len(vec2):
        raise ValueError(f"Vector dimension mismatch: {len(vec1)} vs {len(vec2)}")

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    magnitude1 = float(np.linalg.norm(a))
    magnitude2 = float(np.linalg.norm(b))

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return float(np.dot(a, b) / (magnitude1 * magnitude2))


def is_unit_vector(vec: List[float], tolerance: float = 1e-6) -> bool:
    return abs(float(np.linalg.norm(np.asarray(vec, dtype=float))) - 1.0) <= tolerance


# =============================================================================
# Cache
# =============================================================================

def _cache_key(text: str) -> str:
    """Generate cache key from text (SHA256 hash)"""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()[:16]


@dataclass
class EmbeddingCache:
    """In-process TTL cache of text -> vector."""
    ttl_ms: int = 24 * 60 * 60 * 1000
    _entries: Dict[str, Tuple[float, List[float]]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, text: str) -> Optional[List[float]]:
        key = _cache_key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, vector = entry
            if (time.monotonic() - stored_at) * 1000 > self.ttl_ms:
                del self._entries[key]
                return None
            return list(vector)

    def set(self, text: str, vector: List[float]) -> None:
        with self._lock:
            self._entries[_cache_key(text)] = (time.monotonic(), list(vector))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
