"""
Unit tests for OpenRouterTopicClassifier.

Test Coverage:
- classify() with mocked OpenRouter responses (httpx.MockTransport)
- Request shape (model, max_tokens, excerpt truncation, auth header)
- Degradation to "Uncategorized" (no API key, HTTP error, timeout, bad payload)
- Answer normalization
"""

import json

import httpx
import pytest

from history_rag.models.history import UNCATEGORIZED_TOPIC
from history_rag.services.topic_classifier import EXCERPT_CHARS, OpenRouterTopicClassifier


def completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def classifier_for():
    """Build a classifier whose API calls are answered by `handler`."""

    def build(handler, api_key="test_openrouter_key"):
        return OpenRouterTopicClassifier(
            api_key=api_key,
            model="openai/gpt-3.5-turbo",
            timeout=2.0,
            transport=httpx.MockTransport(handler),
        )

    return build


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_returns_model_label(classifier_for):
    requests_seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests_seen.append(request)
        return completion("Technology")

    topic = await classifier_for(handler).classify("Intro to asyncio", "z" * 5000)

    assert topic == "Technology"

    request = requests_seen[0]
    payload = json.loads(request.content)
    assert request.url == "https://openrouter.ai/api/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer test_openrouter_key"
    assert payload["model"] == "openai/gpt-3.5-turbo"
    assert payload["max_tokens"] == 10
    assert payload["messages"][0]["role"] == "system"

    user_message = payload["messages"][1]["content"]
    assert user_message.startswith("Title: Intro to asyncio")
    assert user_message.count("z") == EXCERPT_CHARS


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_without_api_key_skips_network(classifier_for, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected without an API key")

    topic = await classifier_for(handler, api_key=None).classify("Title", "content")

    assert topic == UNCATEGORIZED_TOPIC


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_http_error_degrades(classifier_for):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    assert await classifier_for(handler).classify("Title", "content") == UNCATEGORIZED_TOPIC


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_timeout_degrades(classifier_for):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    assert await classifier_for(handler).classify("Title", "content") == UNCATEGORIZED_TOPIC


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_malformed_payload_degrades(classifier_for):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    assert await classifier_for(handler).classify("Title", "content") == UNCATEGORIZED_TOPIC


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classify_empty_answer_degrades(classifier_for):
    def handler(request: httpx.Request) -> httpx.Response:
        return completion("   ")

    assert await classifier_for(handler).classify("Title", "") == UNCATEGORIZED_TOPIC


@pytest.mark.unit
@pytest.mark.parametrize(
    "answer, expected",
    [
        ("Finance", "Finance"),
        ("  Social Media.\n", "Social Media"),
        ('"Health"', "Health"),
        ('Topic: "Sports".', "Sports"),
        ("News\nThis page is a news article.", "News"),
        ("", UNCATEGORIZED_TOPIC),
        (None, UNCATEGORIZED_TOPIC),
        ("...", UNCATEGORIZED_TOPIC),
    ],
)
def test_normalize_topic(answer, expected):
    assert OpenRouterTopicClassifier.normalize_topic(answer) == expected


@pytest.mark.unit
def test_normalize_topic_caps_length():
    topic = OpenRouterTopicClassifier.normalize_topic("A" * 200)

    assert 0 < len(topic) <= 40
