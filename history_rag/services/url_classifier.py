"""
URL classification for history ingestion.

Search engine result pages are ephemeral and would pollute the index, so they
are detected before any extraction or classification work happens.
"""

import logging
import re
from typing import Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

UNKNOWN_DOMAIN = "unknown-domain"

# (host pattern, path + query pattern) of search results pages; hosts match
# as the full hostname or a subdomain of it
SEARCH_ENGINE_PATTERNS = [
    # Google
    (r"(.+\.)?google(\.[a-z]{2,3}){1,2}", r"/search(\?.*)?"),
    # Bing
    (r"(.+\.)?bing\.com", r"/search(\?.*)?"),
    # Yahoo
    (r"search\.yahoo\.com", r".*"),
    # DuckDuckGo
    (r"(.+\.)?duckduckgo\.com", r"/(html/?)?\?(.*&)?q=.*"),
    # Baidu
    (r"(.+\.)?baidu\.com", r"/s\?.*"),
    # Yandex
    (r"(.+\.)?yandex(\.[a-z]{2,3}){1,2}", r"/search/?(\?.*)?"),
]

_SEARCH_ENGINE_REGEXES = [
    (re.compile(host, re.IGNORECASE), re.compile(path, re.IGNORECASE))
    for host, path in SEARCH_ENGINE_PATTERNS
]


def is_search_engine_url(url: str) -> bool:
    """
    Check whether a URL is a search engine results page.

    The host pattern must match the whole hostname and the path pattern the
    whole path + query, so search URLs embedded in another site's query
    string do not count.

    Args:
        url: Visited URL

    Returns:
        True if the URL should be skipped
    """
    if not url:
        return False

    try:
        parsed = urlparse(url.strip())
        host = parsed.hostname
    except ValueError:
        return False

    if not host:
        return False

    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"

    return any(
        host_regex.fullmatch(host) and path_regex.fullmatch(path)
        for host_regex, path_regex in _SEARCH_ENGINE_REGEXES
    )


def split_url(url: str) -> Tuple[str, str]:
    """
    Split a URL into (domain, path).

    The path includes the query string. Never raises: malformed URLs degrade
    to (UNKNOWN_DOMAIN, "").

    Args:
        url: Visited URL

    Returns:
        Tuple of (domain, path)
    """
    try:
        parsed = urlparse(url)
        domain = parsed.hostname
        if not parsed.scheme or not domain:
            raise ValueError(f"URL has no scheme or host: {url!r}")

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        return domain, path

    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to split URL, using sentinel domain: {e}")
        return UNKNOWN_DOMAIN, ""
