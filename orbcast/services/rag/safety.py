"""
Safety primitives for the prediction path.

Score/lift clamps, data-sufficiency checks, and the timeout and
exception-absorbing combinators the safe predictor is built on.
"""

import math
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from orbcast.core.config import DEFAULT_RAG_CONFIG, DEFAULT_SAFETY_CONFIG, RAGConfig, SafetyConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_score(score: float, config: SafetyConfig = DEFAULT_SAFETY_CONFIG) -> float:
    """Clamp to [min_score, max_score]; non-finite values become the fallback score."""
    if not _is_finite(score):
        return config.default_fallback_score
    return max(config.min_score, min(config.max_score, float(score)))


def is_valid_score(score: Any, config: SafetyConfig = DEFAULT_SAFETY_CONFIG) -> bool:
    return _is_finite(score) and config.min_score <= score <= config.max_score


def clamp_lift(lift: float, config: SafetyConfig = DEFAULT_SAFETY_CONFIG) -> float:
    """Clamp to +/- max_absolute_lift; non-finite lifts become 0."""
    if not _is_finite(lift):
        return 0.0
    bound = config.max_absolute_lift
    return max(-bound, min(bound, float(lift)))


def has_enough_data_for_rag(
    neighbor_count: int, avg_similarity: float, config: RAGConfig = DEFAULT_RAG_CONFIG
) -> bool:
    """At least min_neighbors neighbors with average similarity >= min_similarity."""
    return neighbor_count >= config.min_neighbors and avg_similarity >= config.min_similarity


def is_variance_too_high(variance: float, config: SafetyConfig = DEFAULT_SAFETY_CONFIG) -> bool:
    return variance > config.max_variance_for_fallback


async def with_timeout(awaitable: Awaitable[T], timeout_ms: float, fallback: T) -> T:
    """
    Await with a hard timeout.

    Returns ``fallback`` if the timeout fires; the pending operation is
    cancelled and its eventual result discarded. Exceptions raised by the
    awaitable propagate to the caller.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.warning(f"Operation timed out after {timeout_ms}ms")
        return fallback


async def safe_execute(
    fn: Callable[[], Awaitable[T]],
    fallback: T,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> T:
    """Run ``fn()``; on any exception log it, notify ``on_error`` and return ``fallback``."""
    try:
        return await fn()
    except Exception as e:
        logger.error(f"Safe execution failed, using fallback: {e}")
        if on_error is not None:
            on_error(e)
        return fallback
