"""Embedding and vector store components"""
from .qdrant_store import HistoryStoreError, QdrantHistoryStore, StoredRecord
from .deepinfra_embedder import DeepInfraEmbedder

__all__ = [
    'HistoryStoreError',
    'QdrantHistoryStore',
    'StoredRecord',
    'DeepInfraEmbedder',
]
