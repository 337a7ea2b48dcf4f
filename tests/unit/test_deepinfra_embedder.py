"""
Unit tests for the DeepInfra embedding component (API calls mocked).
"""

from unittest.mock import MagicMock, patch

import pytest
from tenacity import wait_none

from history_rag.rag.components.deepinfra_embedder import (
    MAX_EMBED_CHARS,
    DeepInfraEmbedder,
)


def api_response(embeddings, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"embeddings": embeddings}
    response.text = "error body"
    return response


@pytest.fixture
def embedder():
    return DeepInfraEmbedder(api_key="test_deepinfra_key", model="intfloat/e5-large-v2", embedding_dim=4, batch_size=2)


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(DeepInfraEmbedder._embed_batch.retry, "wait", wait_none())


@pytest.mark.unit
def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("DEEPINFRA_API_KEY", raising=False)

    with pytest.raises(ValueError, match="DEEPINFRA_API_KEY"):
        DeepInfraEmbedder()


@pytest.mark.unit
def test_embed_query_uses_query_prefix(embedder):
    with patch("history_rag.rag.components.deepinfra_embedder.requests.post") as mock_post:
        mock_post.return_value = api_response([[0.1, 0.2, 0.3, 0.4]])

        vector = embedder.embed_query("vector databases")

    assert vector == [0.1, 0.2, 0.3, 0.4]
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api.deepinfra.com/v1/inference/intfloat/e5-large-v2"
    assert kwargs["json"] == {"inputs": ["query: vector databases"]}
    assert kwargs["headers"]["Authorization"] == "Bearer test_deepinfra_key"


@pytest.mark.unit
def test_embed_passages_batches_and_truncates(embedder):
    texts = ["first page", "second page", "y" * (MAX_EMBED_CHARS + 500)]

    with patch("history_rag.rag.components.deepinfra_embedder.requests.post") as mock_post:
        mock_post.side_effect = [
            api_response([[1.0] * 4, [2.0] * 4]),
            api_response([[3.0] * 4]),
        ]

        vectors = embedder.embed_passages(texts)

    assert vectors == [[1.0] * 4, [2.0] * 4, [3.0] * 4]
    assert mock_post.call_count == 2

    first_inputs = mock_post.call_args_list[0].kwargs["json"]["inputs"]
    assert first_inputs == ["passage: first page", "passage: second page"]

    last_input = mock_post.call_args_list[1].kwargs["json"]["inputs"][0]
    assert last_input == "passage: " + "y" * MAX_EMBED_CHARS


@pytest.mark.unit
def test_api_error_retried_then_raised(embedder, no_retry_wait):
    with patch("history_rag.rag.components.deepinfra_embedder.requests.post") as mock_post:
        mock_post.return_value = api_response([], status_code=503)

        with pytest.raises(RuntimeError, match="DeepInfra API error 503"):
            embedder.embed_query("anything")

    assert mock_post.call_count == 3


@pytest.mark.unit
def test_embedding_count_mismatch_raises(embedder, no_retry_wait):
    with patch("history_rag.rag.components.deepinfra_embedder.requests.post") as mock_post:
        mock_post.return_value = api_response([])

        with pytest.raises(RuntimeError, match="0 embeddings for 1 inputs"):
            embedder.embed_query("anything")


@pytest.mark.unit
def test_run_returns_embedding_and_meta(embedder):
    with patch("history_rag.rag.components.deepinfra_embedder.requests.post") as mock_post:
        mock_post.return_value = api_response([[0.5] * 4])

        result = embedder.run(text="fruit")

    assert result["embedding"] == [0.5] * 4
    assert result["meta"] == {"model": "intfloat/e5-large-v2", "text_length": 5}


@pytest.mark.unit
def test_serialization_round_trip(embedder, monkeypatch):
    monkeypatch.setenv("DEEPINFRA_API_KEY", "env_key")

    restored = DeepInfraEmbedder.from_dict(embedder.to_dict())

    assert restored.model == embedder.model
    assert restored.embedding_dim == 4
    assert restored.batch_size == 2
    assert restored.api_key == "env_key"
