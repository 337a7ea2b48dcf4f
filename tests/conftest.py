"""
Shared pytest fixtures for browser history tests.

Provides an in-process Qdrant collection (local mode), a deterministic
bag-of-words embedder and scripted extractor / classifier doubles, so the
whole ingestion and query path runs without network access.
"""

import hashlib
import math
import re
from datetime import datetime
from typing import Dict, List

import pytest
from qdrant_client import QdrantClient

from history_rag.rag.components.qdrant_store import QdrantHistoryStore
from history_rag.services.history_service import BrowserHistoryService

# Fixed reference time for recency buckets (local time, mid-day)
NOW = datetime(2024, 5, 15, 12, 0, 0)


def to_ms(dt: datetime) -> int:
    """Naive local datetime -> epoch milliseconds."""
    return int(dt.timestamp() * 1000)


class FakeEmbedder:
    """
    Deterministic embedder: hashed bag of words plus a small bias term.

    Texts sharing words get high cosine similarity; the bias keeps empty
    texts off the zero vector.
    """

    def __init__(self, embedding_dim: int = 128):
        self.embedding_dim = embedding_dim
        self.calls: List[str] = []

    def _embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * self.embedding_dim
        vector[0] = 0.05
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            index = 1 + int(hashlib.md5(token.encode()).hexdigest(), 16) % (self.embedding_dim - 1)
            vector[index] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)

    def embed_passages(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]


class FakeExtractor:
    """Returns scripted page text per URL and records every call."""

    def __init__(self, pages: Dict[str, str] = None, default: str = "generic page text"):
        self.pages = pages or {}
        self.default = default
        self.calls: List[str] = []

    async def extract(self, url: str, timeout_ms: int = None) -> str:
        self.calls.append(url)
        return self.pages.get(url, self.default)


class FakeClassifier:
    """Returns a scripted topic per title and records every call."""

    def __init__(self, topics: Dict[str, str] = None, default: str = "Technology"):
        self.topics = topics or {}
        self.default = default
        self.calls: List[tuple] = []

    async def classify(self, title: str, content_excerpt: str) -> str:
        self.calls.append((title, content_excerpt))
        return self.topics.get(title, self.default)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def history_store(embedder):
    """Qdrant local-mode store on a fresh in-memory collection."""
    client = QdrantClient(":memory:")
    store = QdrantHistoryStore(client=client, embedder=embedder, collection_name="test_browser_history")
    yield store
    client.close()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def history_service(history_store, extractor, classifier):
    """History service wired to the in-memory store with a fixed clock."""
    return BrowserHistoryService(
        store=history_store,
        extractor=extractor,
        classifier=classifier,
        clock=lambda: NOW,
        extraction_timeout_ms=1000,
        bulk_concurrency=2,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def ms():
    """Converter from naive local datetimes to epoch milliseconds."""
    return to_ms
