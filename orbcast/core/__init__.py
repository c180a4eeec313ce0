"""
Core module - configuration, data models, embeddings and orb storage
"""

from .config import Config, EngineConfig, load_engine_config
from .store import InMemoryOrbStore, OrbStore

__all__ = ['Config', 'EngineConfig', 'load_engine_config', 'InMemoryOrbStore', 'OrbStore']
