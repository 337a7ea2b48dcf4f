"""
Topic classification for visited pages via OpenRouter.

Assigns a single short category label (e.g. "Technology", "Finance") to a page
from its title and a content excerpt. Classification is best effort: missing
credentials, timeouts, API errors and empty answers all degrade to
"Uncategorized".
"""

import logging
import os
from typing import Optional

import httpx

from history_rag.models.history import UNCATEGORIZED_TOPIC

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 1000
MAX_TOPIC_CHARS = 40

CLASSIFIER_SYSTEM_PROMPT = (
    "You are a webpage classifier. Assign a single topic category to the webpage "
    "based on its title and content. Respond with ONLY the single topic word or short "
    "phrase (2-3 words max). Choose from common categories like Technology, Finance, "
    "News, Entertainment, Science, Health, Sports, Education, Shopping, Social Media, "
    "Travel, Food, etc."
)


class OpenRouterTopicClassifier:
    """
    Service for page topic classification through the OpenRouter chat API.

    Features:
    - Single short label per page (max_tokens=10)
    - Excerpt capped at 1000 characters
    - Timeout handling (15s)
    - Never raises
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize topic classifier.

        Args:
            api_key: OpenRouter API key (defaults to OPENROUTER_API_KEY env var)
            model: OpenRouter model identifier (defaults to OPENROUTER_TOPIC_MODEL env var)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to stub the API in tests)
        """
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        self.api_url = "https://openrouter.ai/api/v1/chat/completions"
        self.model = model or os.getenv("OPENROUTER_TOPIC_MODEL", "openai/gpt-3.5-turbo")
        self.referer = os.getenv("OPENROUTER_REFERER", "http://localhost:8000")
        self.timeout = timeout
        self.transport = transport

        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY not configured - all pages will be 'Uncategorized'")

    async def classify(self, title: str, content_excerpt: str) -> str:
        """
        Classify a page into a short topic label.

        Args:
            title: Page title
            content_excerpt: Page text (truncated to EXCERPT_CHARS)

        Returns:
            Topic label, or "Uncategorized" on any failure
        """
        if not self.api_key:
            return UNCATEGORIZED_TOPIC

        messages = [
            {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Title: {title}\n\nContent excerpt: {(content_excerpt or '')[:EXCERPT_CHARS]}",
            },
        ]

        try:
            answer = await self._call_openrouter_api_with_messages(messages)
        except httpx.TimeoutException:
            logger.warning(f"Topic classification timed out after {self.timeout}s for '{title[:50]}'")
            return UNCATEGORIZED_TOPIC
        except httpx.HTTPStatusError as e:
            logger.warning(f"OpenRouter API error {e.response.status_code} during topic classification")
            return UNCATEGORIZED_TOPIC
        except Exception as e:
            logger.error(f"Failed to determine webpage topic: {e}")
            return UNCATEGORIZED_TOPIC

        return self.normalize_topic(answer)

    @staticmethod
    def normalize_topic(answer: Optional[str]) -> str:
        """
        Clean an LLM answer into a topic label.

        Keeps the first line, strips quotes and trailing punctuation, and caps
        the length. Empty answers become "Uncategorized".
        """
        if not answer:
            return UNCATEGORIZED_TOPIC

        topic = answer.strip().splitlines()[0] if answer.strip() else ""
        topic = topic.strip()

        # Models sometimes echo the label prefix
        if topic.lower().startswith("topic:"):
            topic = topic[len("topic:"):]

        topic = topic.strip("\"'`*.!,;: ")

        if not topic:
            return UNCATEGORIZED_TOPIC

        return topic[:MAX_TOPIC_CHARS]

    async def _call_openrouter_api_with_messages(
        self,
        messages: list,
        temperature: float = 0.0,
        max_tokens: int = 10,
    ) -> str:
        """
        Call OpenRouter API with a system + user message pair.

        Returns:
            Raw response text

        Raises:
            httpx.TimeoutException: If request exceeds timeout
            httpx.HTTPStatusError: If API returns error status
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.referer,
            "Content-Type": "application/json",
        }

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()

            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
