"""
Services layer for orbcast.

The retrieval-augmented prediction engine lives in ``services.rag``.
"""
