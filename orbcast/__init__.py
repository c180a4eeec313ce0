"""
orbcast - Retrieval-Augmented Ad Performance Prediction

Predicts creative performance by retrieving similar historical ads and
reasoning contrastively about which of their traits explain outcome
differences. Every prediction goes through a safety wrapper that always
returns a valid, clamped result.
"""

__version__ = "0.1.0"
__author__ = "orbcast Team"
