"""Pydantic models for the orbcast prediction engine.

Enums, the Orb entity and its parts, the flattened AdOrb view, retrieval and
analysis results, marketplace types, and prediction/pipeline outputs.
No I/O in this file -- pure type definitions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with utcnow()."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


# Trait values are kept in their original JSON type; bool is listed first so
# pydantic never coerces True into 1.
TraitValue = Union[bool, int, float, str]


# =============================================================================
# Enums
# =============================================================================

class OrbState(str, Enum):
    SUGGESTED = "suggested"
    DRAFT = "draft"
    PUBLISHED = "published"
    OBSERVED = "observed"


class CreatedFrom(str, Enum):
    USER = "user"
    AI = "ai"


class OrbSource(str, Enum):
    MANUAL_UPLOAD = "manual_upload"
    FACEBOOK_IMPORT = "facebook_import"
    AI_GENERATED = "ai_generated"


class Recommendation(str, Enum):
    USE = "use"
    AVOID = "avoid"
    TEST = "test"
    NEUTRAL = "neutral"


class PredictionMethod(str, Enum):
    RAG = "rag"
    HYBRID = "hybrid"
    LEGACY = "legacy"
    FALLBACK = "fallback"


class FallbackReason(str, Enum):
    RAG_DISABLED = "rag_disabled"
    INSUFFICIENT_NEIGHBORS = "insufficient_neighbors"
    LOW_SIMILARITY = "low_similarity"
    HIGH_VARIANCE = "high_variance"
    MISSING_EMBEDDINGS = "missing_embeddings"
    TIMEOUT = "timeout"
    ERROR = "error"
    INVALID_SCORE = "invalid_score"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NeedDimension(str, Enum):
    PLATFORM = "platform"
    TRAIT = "trait"
    FORMAT = "format"
    OBJECTIVE = "objective"
    AUDIENCE = "audience"


class AccessTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SuggestionTrigger(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    NEW_ORB_ADDED = "new_orb_added"
    DATA_GAP = "data_gap"
    MANUAL = "manual"


# =============================================================================
# Orb
# =============================================================================

FACET_GROUPS = [
    "platform_placement",
    "media_format",
    "visual_style",
    "audio_voice",
    "content_hook",
    "text_features",
    "talent_face",
    "sentiment",
    "brand",
    "cta",
]


class FacetSet(BaseModel):
    """Low-cardinality explanation labels, grouped."""

    platform_placement: List[str] = Field(default_factory=list)
    media_format: List[str] = Field(default_factory=list)
    visual_style: List[str] = Field(default_factory=list)
    audio_voice: List[str] = Field(default_factory=list)
    content_hook: List[str] = Field(default_factory=list)
    text_features: List[str] = Field(default_factory=list)
    talent_face: List[str] = Field(default_factory=list)
    sentiment: List[str] = Field(default_factory=list)
    brand: List[str] = Field(default_factory=list)
    cta: List[str] = Field(default_factory=list)

    def group(self, name: str) -> List[str]:
        return getattr(self, name)


class OrbRaw(BaseModel):
    """Original analysis payload and provenance. Never modified after creation."""

    analysis_json: Dict[str, Any] = Field(default_factory=dict)
    source: OrbSource = OrbSource.MANUAL_UPLOAD
    video_url: Optional[str] = None
    ad_text: Optional[str] = None
    platform_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('created_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)


class EmbeddingSet(BaseModel):
    creative: List[float] = Field(default_factory=list)
    script: List[float] = Field(default_factory=list)
    visual: List[float] = Field(default_factory=list)


class CanonicalTexts(BaseModel):
    creative: str = ""
    script: str = ""
    visual: str = ""


class OrbDerived(BaseModel):
    """Regenerable data computed from raw."""

    facets: FacetSet = Field(default_factory=FacetSet)
    embeddings: EmbeddingSet = Field(default_factory=EmbeddingSet)
    embedding_version: str = "1.0.0"
    canonical_texts: Optional[CanonicalTexts] = None
    created_at: datetime = Field(default_factory=utcnow)


class OrbCTA(BaseModel):
    type: Optional[str] = None
    text: Optional[str] = None
    strength: Optional[str] = None


class OrbSpec(BaseModel):
    """Editable creative specification."""

    platform: str
    objective: str = "conversions"
    facets: FacetSet = Field(default_factory=FacetSet)
    script_outline: List[str] = Field(default_factory=list)
    shot_beats: List[str] = Field(default_factory=list)
    edit_checklist: List[str] = Field(default_factory=list)
    cta: Optional[OrbCTA] = None
    notes: Optional[str] = None


class LearningIntent(BaseModel):
    """The single experimental lever a suggested orb is testing."""

    experiment_lever: str
    reason: str
    expected_info_gain: float = Field(0.0, ge=0, le=100)
    control_values: Dict[str, Any] = Field(default_factory=dict)
    facet_group: Optional[str] = None


class OrbResults(BaseModel):
    success_score: float = Field(..., ge=0, le=100)
    roas: Optional[float] = None
    ctr: Optional[float] = None
    conversions: Optional[float] = None
    impressions: Optional[float] = None
    clicks: Optional[float] = None
    ad_spend: Optional[float] = None
    revenue: Optional[float] = None
    fetched_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrbPrediction(BaseModel):
    score: float
    confidence: float
    method: PredictionMethod
    predicted_at: datetime = Field(default_factory=utcnow)


class Orb(BaseModel):
    """Canonical, lifecycle-tracked representation of one ad concept."""

    id: str = Field(default_factory=new_id)
    state: OrbState
    created_from: CreatedFrom = CreatedFrom.USER
    parent_orb_id: Optional[str] = None
    raw: OrbRaw = Field(default_factory=OrbRaw)
    derived: OrbDerived = Field(default_factory=OrbDerived)
    spec: OrbSpec
    prediction: Optional[OrbPrediction] = None
    learning_intent: Optional[LearningIntent] = None
    results: Optional[OrbResults] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)


class LearningRecord(BaseModel):
    original_suggestion_id: str
    observed_orb_id: str
    experiment_lever: str
    predicted_score: float
    actual_score: float
    delta: float
    recorded_at: datetime = Field(default_factory=utcnow)


class ExperimentalLever(BaseModel):
    id: str
    name: str
    facet_group: str
    description: str
    control_value: Optional[TraitValue] = None
    variant_value: Optional[TraitValue] = None
    sample_size: int = 0
    uncertainty: float = 0.0
    potential_impact: float = 0.0


# =============================================================================
# Ad input + flattened AdOrb
# =============================================================================

class AdEntry(BaseModel):
    """Upstream ad record. Read-only input to the engine."""

    id: str
    media_url: str = ""
    media_type: str = "video"
    name: Optional[str] = None
    extracted_content: Dict[str, Any] = Field(default_factory=dict)
    extracted_results: Optional[Dict[str, Any]] = None
    has_results: bool = False
    success_score: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)


class AdResults(BaseModel):
    success_score: Optional[float] = None
    roas: Optional[float] = None
    ctr: Optional[float] = None
    conversions: Optional[float] = None
    impressions: Optional[float] = None
    clicks: Optional[float] = None
    ad_spend: Optional[float] = None
    revenue: Optional[float] = None


class AdOrbMetadata(BaseModel):
    platform: Optional[str] = None
    objective: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    has_results: bool = False

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)


class AdOrb(BaseModel):
    """Flattened trait/embedding view of an ad used for similarity math."""

    id: str
    traits: Dict[str, TraitValue] = Field(default_factory=dict)
    results: Optional[AdResults] = None
    metadata: AdOrbMetadata = Field(default_factory=AdOrbMetadata)
    embedding: Optional[List[float]] = None
    canonical_text: Optional[str] = None


class StoreState(BaseModel):
    total_orbs: int = 0
    orbs_with_embeddings: int = 0
    orbs_with_results: int = 0
    last_updated: Optional[datetime] = None


# =============================================================================
# Retrieval + analysis
# =============================================================================

class RetrievalFilters(BaseModel):
    platform: Optional[str] = None
    objective: Optional[str] = None
    max_age_days: Optional[float] = None
    min_success_score: Optional[float] = None
    require_results: bool = False


class NeighborAd(BaseModel):
    orb: AdOrb
    vector_similarity: float = 0.0
    structured_similarity: float = 0.0
    hybrid_similarity: float = 0.0
    recency_weight: float = 1.0
    weighted_similarity: float = 0.0


class NeighborStats(BaseModel):
    count: int = 0
    avg_similarity: float = 0.0
    avg_vector_similarity: float = 0.0
    avg_structured_similarity: float = 0.0
    avg_recency_weight: float = 0.0
    avg_success_score: float = 0.0
    success_std_dev: float = 0.0
    min_similarity: float = 0.0
    max_similarity: float = 0.0


class TraitEffect(BaseModel):
    trait: str
    trait_value: Optional[TraitValue] = True
    lift: float = 0.0
    lift_percent: float = 0.0
    confidence: float = 0.0
    n_with: int = 0
    n_without: int = 0
    avg_success_with: float = 0.0
    avg_success_without: float = 0.0
    is_significant: bool = False
    recommendation: Recommendation = Recommendation.TEST

    @property
    def label(self) -> str:
        """Human-readable trait name: bare key for booleans, key=value otherwise."""
        if self.trait_value is None or isinstance(self.trait_value, bool):
            return self.trait
        return f"{self.trait}={self.trait_value}"


class ContrastiveAnalysis(BaseModel):
    trait_effects: List[TraitEffect] = Field(default_factory=list)
    top_positive: List[TraitEffect] = Field(default_factory=list)
    top_negative: List[TraitEffect] = Field(default_factory=list)
    low_confidence: List[TraitEffect] = Field(default_factory=list)
    total_neighbors: int = 0
    avg_similarity: float = 0.0


class PredictionBounds(BaseModel):
    lower: float
    upper: float


class NeighborPrediction(BaseModel):
    prediction: float
    variance: float
    confidence: float
    neighbor_count: int
    avg_similarity: float
    avg_recency: float
    min_score: float = 0.0
    max_score: float = 0.0
    bounds: Optional[PredictionBounds] = None


class LegacyPrediction(BaseModel):
    score: float
    confidence: float


# =============================================================================
# Explanations
# =============================================================================

class ExperimentSuggestion(BaseModel):
    trait: str
    current_value: Optional[TraitValue] = None
    suggested_value: Optional[TraitValue] = None
    reason: str
    expected_info_gain: float = 0.0


class Explanation(BaseModel):
    summary: str
    neighbor_explanation: str = ""
    trait_explanations: List[str] = Field(default_factory=list)
    confidence_explanation: str = ""
    recommendations: List[str] = Field(default_factory=list)
    experiment_suggestions: List[ExperimentSuggestion] = Field(default_factory=list)


# =============================================================================
# Marketplace
# =============================================================================

class DataNeed(BaseModel):
    id: str
    dimension: NeedDimension
    value: str
    reason: str
    severity: Severity
    current_samples: int = 0
    required_samples: int = 0
    confidence_impact: float = 0.0
    context: Dict[str, Any] = Field(default_factory=dict)


class DatasetCoverage(BaseModel):
    platforms: List[str] = Field(default_factory=list)
    traits: List[str] = Field(default_factory=list)
    objectives: List[str] = Field(default_factory=list)
    formats: List[str] = Field(default_factory=list)
    audiences: List[str] = Field(default_factory=list)


class MarketplaceDataset(BaseModel):
    id: str
    name: str
    description: str
    covers: DatasetCoverage = Field(default_factory=DatasetCoverage)
    sample_count: int = 0
    freshness_score: float = Field(0.0, ge=0, le=100)
    confidence_score: float = Field(0.0, ge=0, le=100)
    usage_count: int = 0
    avg_confidence_gain: Optional[float] = None
    access_tier: AccessTier = AccessTier.FREE
    is_public: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MarketplaceMatch(BaseModel):
    dataset: MarketplaceDataset
    coverage_score: float
    freshness_score: float
    confidence_score: float
    match_score: float
    addressed_needs: List[DataNeed] = Field(default_factory=list)
    estimated_confidence_gain: float = 0.0
    explanation: str = ""


class SuggestionActions(BaseModel):
    preview_impact: bool = True
    add_dataset: bool = False
    learn_more: bool = True


class MarketplaceSuggestion(BaseModel):
    match: MarketplaceMatch
    headline: str
    reason: str
    impact: str
    actions: SuggestionActions = Field(default_factory=SuggestionActions)
    priority: int = 0


class GapAnalysis(BaseModel):
    needs: List[DataNeed] = Field(default_factory=list)
    high_severity_count: int = 0
    medium_severity_count: int = 0
    low_severity_count: int = 0
    has_significant_gaps: bool = False
    primary_gap_dimension: Optional[NeedDimension] = None
    current_confidence: float = 0.0
    potential_confidence: float = 0.0
    max_confidence_gain: float = 0.0


class MarketplaceInsights(BaseModel):
    data_needs: List[DataNeed] = Field(default_factory=list)
    suggestions: List[MarketplaceSuggestion] = Field(default_factory=list)
    gap_analysis: Optional[GapAnalysis] = None


class StatContext(BaseModel):
    platform: Optional[str] = None
    objective: Optional[str] = None
    format: Optional[str] = None


class SharedContrastStat(BaseModel):
    trait: str
    context: StatContext = Field(default_factory=StatContext)
    avg_lift: float
    variance: float
    confidence: float
    sample_size: int
    min_contributors: int = 1
    aggregated_at: datetime = Field(default_factory=utcnow)


class BlendedLift(BaseModel):
    trait: str = ""
    local_lift: float
    shared_lift: float
    blended_lift: float
    alpha: float
    using_shared_data: bool


# =============================================================================
# Prediction outputs + logging
# =============================================================================

class RAGPredictionResult(BaseModel):
    predicted_score: float
    confidence: float
    method: PredictionMethod
    legacy_score: Optional[float] = None
    rag_prediction: Optional[NeighborPrediction] = None
    blend_alpha: float = 0.0
    neighbor_count: int = 0
    neighbor_ids: List[str] = Field(default_factory=list)
    contrastive_analysis: Optional[ContrastiveAnalysis] = None
    explanation: Optional[Explanation] = None
    marketplace: Optional[MarketplaceInsights] = None
    fallback_reason: Optional[FallbackReason] = None


class SafePredictionResult(BaseModel):
    """Always-valid output of the safety wrapper."""

    score: float
    confidence: float
    method: PredictionMethod
    fallback_reason: Optional[FallbackReason] = None
    legacy_score: Optional[float] = None
    rag_prediction: Optional[RAGPredictionResult] = None
    compute_time_ms: float = 0.0


class ConfidenceInputs(BaseModel):
    neighbors: int = 0
    similarity: float = 0.0
    variance: float = 0.0


class ScoreBreakdown(BaseModel):
    rag: Optional[float] = None
    legacy: Optional[float] = None
    final: float


class PredictionLog(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    ad_id: Optional[str] = None
    method: PredictionMethod
    fallback_reason: Optional[FallbackReason] = None
    confidence_inputs: ConfidenceInputs = Field(default_factory=ConfidenceInputs)
    scores: ScoreBreakdown
    blend_alpha: Optional[float] = None
    marketplace_matches: int = 0
    compute_time_ms: float = 0.0
    error: Optional[str] = None


class PredictionStats(BaseModel):
    total: int = 0
    by_method: Dict[str, int] = Field(default_factory=dict)
    avg_compute_time_ms: float = 0.0
    fallback_rate: float = 0.0


class PredictionReadiness(BaseModel):
    ready: bool
    total_orbs: int = 0
    orbs_with_results: int = 0
    orbs_with_embeddings: int = 0
    required_orbs: int = 0
    reason: str = ""


# =============================================================================
# Unified pipeline
# =============================================================================

class TraitImpact(BaseModel):
    trait: str
    lift: float
    confidence: float


class SimilarAdsSection(BaseModel):
    summary: str
    count: int = 0
    avg_performance: float = 0.0
    performance_range: Optional[PredictionBounds] = None


class ContrastSection(BaseModel):
    summary: str
    positive: List[TraitImpact] = Field(default_factory=list)
    negative: List[TraitImpact] = Field(default_factory=list)
    net_impact: float = 0.0


class ConfidenceSection(BaseModel):
    level: ConfidenceLevel
    percentage: float
    reasons: List[str] = Field(default_factory=list)


class DataGap(BaseModel):
    dimension: str
    description: str
    current_samples: int = 0
    required_samples: int = 0


class DataGapSection(BaseModel):
    gaps: List[DataGap] = Field(default_factory=list)
    potential_gain: float = 0.0
    summary: str = ""


class FourSectionExplanation(BaseModel):
    similar_ads: SimilarAdsSection
    contrast: ContrastSection
    confidence: ConfidenceSection
    data_gaps: Optional[DataGapSection] = None


class PipelineResult(BaseModel):
    score: float
    confidence: float
    confidence_level: ConfidenceLevel
    method: PredictionMethod
    neighbor_count: int = 0
    neighbor_prediction: Optional[NeighborPrediction] = None
    contrastive_analysis: Optional[ContrastiveAnalysis] = None
    trait_effects: List[TraitEffect] = Field(default_factory=list)
    explanation: FourSectionExplanation
    summary: str = ""
    recommendations: List[str] = Field(default_factory=list)
    compute_time_ms: float = 0.0
    fallback_reason: Optional[FallbackReason] = None


# =============================================================================
# Suggested orbs
# =============================================================================

class ProvenCore(BaseModel):
    facets: Dict[str, List[str]] = Field(default_factory=dict)
    traits: List[str] = Field(default_factory=list)
    avg_score: float = 0.0


class SuggestionDecision(BaseModel):
    should_generate: bool
    trigger: Optional[SuggestionTrigger] = None
    reason: str


class SuggestedOrbScore(BaseModel):
    predicted_score: float
    confidence: float
    neighbor_count: int = 0
    avg_similarity: float = 0.0
    explanation: str = ""
    supporting_traits: List[str] = Field(default_factory=list)
    is_fallback: bool = False
    scored_at: datetime = Field(default_factory=utcnow)
