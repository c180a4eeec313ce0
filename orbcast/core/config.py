"""
Configuration management for orbcast

Process-level settings come from the environment (``Config``). Engine
behaviour is controlled by immutable dataclasses that are passed explicitly
to every service; ``load_engine_config`` builds them from an optional YAML
file.
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Gemini embeddings (optional; the deterministic fallback is used without it)
    GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY', '')
    EMBED_MODEL: str = os.getenv('ORBCAST_EMBED_MODEL', 'gemini-embedding-001')
    EMBED_DIM: int = int(os.getenv('ORBCAST_EMBED_DIM', '384'))

    # Engine config file (YAML)
    CONFIG_PATH: str = os.getenv('ORBCAST_CONFIG_PATH', '')

    # Logging
    LOG_LEVEL: str = os.getenv('ORBCAST_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls, require_embeddings: bool = False) -> bool:
        """
        Validate configuration

        Args:
            require_embeddings: Require a Gemini key for real embeddings

        Returns:
            True if valid

        Raises:
            ValueError: If a required setting is missing or malformed
        """
        if require_embeddings and not cls.GEMINI_API_KEY:
            raise ValueError("Missing required configuration: GEMINI_API_KEY")

        if cls.EMBED_DIM <= 0:
            raise ValueError(f"ORBCAST_EMBED_DIM must be positive, got {cls.EMBED_DIM}")

        if cls.LOG_LEVEL.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown ORBCAST_LOG_LEVEL: {cls.LOG_LEVEL}")

        return True

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        return getattr(cls, key, default)


# =============================================================================
# Engine configuration (immutable, passed explicitly)
# =============================================================================

@dataclass(frozen=True)
class RAGConfig:
    """Retrieval, weighting, contrastive and blending parameters."""
    # Retrieval
    default_k: int = 20
    min_neighbors: int = 5
    min_similarity: float = 0.5

    # Similarity weights
    vector_weight: float = 0.6
    structured_weight: float = 0.4
    recency_decay_days: float = 30.0

    # Contrastive analysis
    min_sample_size: int = 3
    significance_threshold: float = 5.0

    # Blending
    base_alpha: float = 0.7
    alpha_adjust_for_neighbors: bool = True
    alpha_adjust_for_similarity: bool = True

    # Variance
    variance_penalty_enabled: bool = True
    max_variance_for_full_confidence: float = 15.0


@dataclass(frozen=True)
class SafetyConfig:
    """Timeouts, score bounds, lift clamps and retrieval caps."""
    # Timeouts
    rag_timeout_ms: int = 5000
    embedding_timeout_ms: int = 2000

    # Score bounds
    min_score: float = 0.0
    max_score: float = 100.0
    default_fallback_score: float = 50.0
    default_fallback_confidence: float = 0.0

    # Variance gate
    max_variance_for_fallback: float = 30.0

    # Contrastive
    min_sample_size_per_group: int = 3
    max_absolute_lift: float = 50.0

    # Retrieval
    max_neighbors_to_retrieve: int = 50

    # Cache TTL
    embedding_cache_ttl_ms: int = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class PipelineConfig:
    """Unified decision pipeline settings."""
    confidence_threshold: float = 60.0
    enable_legacy_fallback: bool = True

    include_data_gap_suggestions: bool = True
    max_traits_to_explain: int = 5


@dataclass(frozen=True)
class FeatureFlags:
    """Feature switches. Everything risky defaults to off."""
    enable_rag: bool = False
    enable_contrastive: bool = False
    enable_marketplace_hints: bool = False
    enable_debug_logging: bool = False
    enable_hybrid_blend: bool = True
    enable_suggested_orbs: bool = False
    max_suggestions_per_trigger: int = 3
    min_confidence_for_no_suggestion: float = 80.0


@dataclass(frozen=True)
class MarketplaceConfig:
    enabled: bool = True
    confidence_threshold: float = 60.0
    min_neighbor_threshold: int = 10
    min_similarity_threshold: float = 50.0
    max_suggestions_to_show: int = 3
    min_match_score_to_show: float = 40.0


@dataclass(frozen=True)
class SharedStatsConfig:
    min_samples_for_sharing: int = 10
    min_contributors_for_use: int = 5
    max_alpha_for_shared_data: float = 0.5


@dataclass(frozen=True)
class EngineConfig:
    """All engine settings in one immutable bundle."""
    rag: RAGConfig = field(default_factory=RAGConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    flags: FeatureFlags = field(default_factory=FeatureFlags)
    marketplace: MarketplaceConfig = field(default_factory=MarketplaceConfig)
    shared_stats: SharedStatsConfig = field(default_factory=SharedStatsConfig)

    def with_flags(self, **overrides: Any) -> 'EngineConfig':
        """Return a copy with some feature flags changed."""
        return replace(self, flags=replace(self.flags, **overrides))


DEFAULT_RAG_CONFIG = RAGConfig()
DEFAULT_SAFETY_CONFIG = SafetyConfig()
DEFAULT_PIPELINE_CONFIG = PipelineConfig()
DEFAULT_FEATURE_FLAGS = FeatureFlags()
DEFAULT_MARKETPLACE_CONFIG = MarketplaceConfig()
DEFAULT_SHARED_STATS_CONFIG = SharedStatsConfig()

_SECTIONS = {
    'rag': RAGConfig,
    'safety': SafetyConfig,
    'pipeline': PipelineConfig,
    'flags': FeatureFlags,
    'marketplace': MarketplaceConfig,
    'shared_stats': SharedStatsConfig,
}


def _build_section(name: str, cls, values: Optional[Dict[str, Any]]):
    if not values:
        return cls()
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(
            f"Unknown key(s) in config section '{name}': {', '.join(sorted(unknown))}"
        )
    return cls(**values)


def engine_config_from_dict(data: Optional[Dict[str, Any]]) -> EngineConfig:
    """
    Build an EngineConfig from a plain mapping of sections.

    Args:
        data: Mapping like {"rag": {...}, "flags": {...}}

    Returns:
        EngineConfig with defaults for any missing section

    Raises:
        ValueError: On unknown sections or keys
    """
    data = data or {}
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    sections = {
        name: _build_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return EngineConfig(**sections)


def load_engine_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        config_path: Path to YAML file. Defaults to Config.CONFIG_PATH; when
            neither is set, built-in defaults are returned.

    Returns:
        EngineConfig

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the file contains unknown sections or keys
    """
    path_str = config_path or Config.CONFIG_PATH
    if not path_str:
        return EngineConfig()

    path = Path(path_str)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    logger.info(f"Loaded engine config from {path}")
    return engine_config_from_dict(raw_config)
