"""
Vector indexing layer for browser history.

Embedding and Qdrant storage components used by the history service.
"""
