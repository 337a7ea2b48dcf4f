"""
Browser history RAG service.

Indexes visited pages into a vector store and serves per-user filtered,
semantic and aggregate queries over them.
"""

__version__ = "1.0.0"
