"""
RAG services - retrieval-augmented ad performance prediction.

Entry points:
- SafePredictor: always-valid score with legacy fallback
- PredictionPipeline: unified five-step pipeline with a four-section explanation
- SuggestionService: suggested orbs that test one experimental lever each
"""

from .embedding_service import EmbeddingService
from .legacy import FixedLegacyPredictor, LegacyPredictor, TraitHeuristicPredictor
from .pipeline import PredictionPipeline
from .prediction_log import PredictionLogger
from .rag_predictor import RAGPredictor
from .retrieval import RetrievalService
from .safe_predictor import SafePredictor
from .suggestions import SuggestionService

__all__ = [
    'EmbeddingService',
    'FixedLegacyPredictor',
    'LegacyPredictor',
    'TraitHeuristicPredictor',
    'PredictionPipeline',
    'PredictionLogger',
    'RAGPredictor',
    'RetrievalService',
    'SafePredictor',
    'SuggestionService',
]
