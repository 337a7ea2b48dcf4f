"""Haystack component for DeepInfra API embeddings of history pages"""
import os
import requests
from typing import List, Dict, Any
from haystack import component, default_from_dict, default_to_dict
from tenacity import retry, stop_after_attempt, wait_exponential

# e5 models expect role prefixes on both sides of the search
QUERY_PREFIX = "query: "
PASSAGE_PREFIX = "passage: "

# Page text beyond this is dropped before embedding (e5 context is 512 tokens)
MAX_EMBED_CHARS = 4000


@component
class DeepInfraEmbedder:
    """
    Haystack component for generating embeddings via DeepInfra API.

    Uses intfloat/e5-large-v2 model (1024 dimensions) for semantic search over
    visited page content. Handles API rate limits with exponential backoff.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        embedding_dim: int | None = None,
        batch_size: int = 32
    ):
        """
        Initialize DeepInfra embedder.

        Args:
            api_key: DeepInfra API key (defaults to DEEPINFRA_API_KEY env var)
            model: Model name (defaults to EMBEDDING_MODEL env var, then intfloat/e5-large-v2)
            embedding_dim: Vector size produced by the model (defaults to EMBEDDING_DIM, then 1024)
            batch_size: Batch size for API calls
        """
        self.api_key = api_key or os.getenv("DEEPINFRA_API_KEY")
        if not self.api_key:
            raise ValueError("DEEPINFRA_API_KEY not found in environment")

        self.model = model or os.getenv("EMBEDDING_MODEL", "intfloat/e5-large-v2")
        self.embedding_dim = embedding_dim or int(os.getenv("EMBEDDING_DIM", "1024"))
        self.batch_size = batch_size
        self.api_url = "https://api.deepinfra.com/v1/inference"

    @component.output_types(embedding=List[float], meta=Dict[str, Any])
    def run(self, text: str) -> Dict[str, Any]:
        """
        Generate embedding for a single search probe.

        Args:
            text: Query text to embed

        Returns:
            Dict with 'embedding' (1024-dim vector) and 'meta' (API metadata)
        """
        return {
            "embedding": self.embed_query(text),
            "meta": {"model": self.model, "text_length": len(text)}
        }

    def embed_query(self, text: str) -> List[float]:
        """Embed a similarity probe."""
        return self._embed_batch([QUERY_PREFIX + text[:MAX_EMBED_CHARS]])[0]

    def embed_passages(self, texts: List[str]) -> List[List[float]]:
        """Embed stored page documents, batch_size texts per API call."""
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            embeddings.extend(
                self._embed_batch([PASSAGE_PREFIX + text[:MAX_EMBED_CHARS] for text in batch])
            )
        return embeddings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts with retry logic.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per text
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts
        }

        response = requests.post(
            f"{self.api_url}/{self.model}",
            json=payload,
            headers=headers,
            timeout=30
        )

        if response.status_code != 200:
            raise RuntimeError(
                f"DeepInfra API error {response.status_code}: {response.text}"
            )

        embeddings = response.json().get("embeddings", [])
        if len(embeddings) != len(texts):
            raise RuntimeError(
                f"DeepInfra returned {len(embeddings)} embeddings for {len(texts)} inputs"
            )
        return embeddings

    def to_dict(self) -> Dict[str, Any]:
        return default_to_dict(
            self,
            model=self.model,
            embedding_dim=self.embedding_dim,
            batch_size=self.batch_size
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeepInfraEmbedder":
        return default_from_dict(cls, data)
