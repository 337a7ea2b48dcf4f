"""
Page content extraction for history ingestion.

Fetches a visited URL and returns its visible text. Extraction is best effort:
any failure (timeout, HTTP error, non-HTML response, parse error) degrades to
an empty string so ingestion can continue.
"""

import asyncio
import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000

# Page bodies beyond this are cut off before parsing
MAX_CONTENT_BYTES = 2 * 1024 * 1024

# Elements that never carry visible page text
NON_CONTENT_SELECTORS = [
    "script",
    "style",
    "noscript",
    "template",
    "svg",
    '[style*="display:none"]',
    '[style*="display: none"]',
    "[hidden]",
]

# Main content wrappers, preferred over the whole body when present
MAIN_CONTENT_SELECTORS = [
    "main",
    "article",
    "#content",
    ".content",
    ".main",
]

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class HttpContentExtractor:
    """
    Extract visible text from web pages over HTTP.

    Features:
    - Bounded total timeout per page (default 10s)
    - Redirect following
    - Content-type checked from headers before the body is read
    - Body size cap (default 2 MiB)
    - Script/style/hidden element removal
    - Main content preference (main, article, #content) with body fallback
    - Never raises
    """

    def __init__(
        self,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_content_bytes: int = MAX_CONTENT_BYTES,
    ):
        """
        Initialize content extractor.

        Args:
            default_timeout_ms: Timeout used when extract() is not given one
            transport: Optional httpx transport (used to stub the network in tests)
            max_content_bytes: Page body bytes read before the rest is dropped
        """
        self.default_timeout_ms = default_timeout_ms
        self.transport = transport
        self.max_content_bytes = max_content_bytes

    async def extract(self, url: str, timeout_ms: Optional[int] = None) -> str:
        """
        Fetch a URL and return its visible plain text.

        Args:
            url: Page URL (http/https only)
            timeout_ms: Total time budget for fetch + parse

        Returns:
            Whitespace-normalised text, or "" on any failure
        """
        timeout_s = (timeout_ms or self.default_timeout_ms) / 1000

        if not re.match(r"^https?://", url or "", re.IGNORECASE):
            logger.info(f"Skipping content extraction for non-HTTP URL: {url}")
            return ""

        try:
            return await asyncio.wait_for(self._fetch_and_extract(url, timeout_s), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Content extraction timed out after {timeout_s:.1f}s: {url}")
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error extracting content from {url}: {e}")
        except Exception as e:
            logger.error(f"Failed to extract content from {url}: {e}")

        return ""

    async def _fetch_and_extract(self, url: str, timeout_s: float) -> str:
        async with httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                # Decide from headers before any of the body is read
                content_type = response.headers.get("content-type", "").lower()
                if content_type and not content_type.startswith(HTML_CONTENT_TYPES):
                    logger.info(f"Skipping non-HTML content ({content_type}): {url}")
                    return ""

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self.max_content_bytes:
                        logger.info(f"Truncating page body at {self.max_content_bytes} bytes: {url}")
                        del body[self.max_content_bytes:]
                        break

                html = bytes(body).decode(response.encoding or "utf-8", errors="replace")

        return self.extract_text(html)

    def extract_text(self, html: str) -> str:
        """
        Extract visible text from an HTML document.

        Args:
            html: Raw HTML

        Returns:
            Text with whitespace collapsed to single spaces
        """
        soup = BeautifulSoup(html, "lxml")

        for selector in NON_CONTENT_SELECTORS:
            for element in soup.select(selector):
                element.decompose()

        candidates = soup.select(", ".join(MAIN_CONTENT_SELECTORS))
        candidate_ids = {id(element) for element in candidates}

        # Outermost wrappers only, so nested matches are not counted twice
        main_elements = [
            element
            for element in candidates
            if not any(id(parent) in candidate_ids for parent in element.parents)
        ]

        if main_elements:
            text = " ".join(element.get_text(" ") for element in main_elements)
        elif soup.body:
            text = soup.body.get_text(" ")
        else:
            text = soup.get_text(" ")

        return re.sub(r"\s+", " ", text).strip()
