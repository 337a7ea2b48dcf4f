"""
Rate Limiting for History Endpoints

Sliding-window limit per client IP on every /api/history route.

Rate Limits (environment):
- RATE_LIMIT_MAX_REQUESTS: requests per window (default 100)
- RATE_LIMIT_WINDOW_SECONDS: window length (default 900 = 15 minutes)

Uses Redis sorted sets when REDIS_URL is set and reachable so limits hold
across API instances; otherwise limits are tracked in process.
"""

import logging
import os
import time
from typing import Dict, List, Optional

import redis
from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window rate limiter.

    Features:
    - Distributed rate limiting via Redis (works across multiple API instances)
    - In-process windows when Redis is not configured or unreachable
    - Idle in-process windows dropped once per window length
    - Retry-After computed from the oldest request in the window
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_requests: int = 100,
        window_seconds: int = 900,
    ):
        """
        Initialize rate limiter.

        Args:
            redis_url: Redis connection URL (None = in-memory only)
            max_requests: Requests allowed per window
            window_seconds: Window length in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.redis_client = None
        self._in_memory_windows: Dict[str, List[float]] = {}
        self._last_sweep = 0.0

        if redis_url:
            try:
                self.redis_client = redis.from_url(redis_url, decode_responses=True)
                self.redis_client.ping()
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning(f"Redis unavailable for rate limiting, using in-memory windows: {e}")
                self.redis_client = None

    @classmethod
    def from_env(cls) -> "RateLimiter":
        return cls(
            redis_url=os.getenv("REDIS_URL"),
            max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100")),
            window_seconds=int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900")),
        )

    def check_rate_limit(self, key: str) -> tuple[bool, int]:
        """
        Record a request and check it against the limit.

        Args:
            key: Client identifier (e.g. IP address)

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        if self.redis_client:
            return self._check_redis_rate_limit(key)
        return self._check_memory_rate_limit(key)

    def _check_redis_rate_limit(self, key: str) -> tuple[bool, int]:
        redis_key = f"rate_limit:history:{key}"
        current_time = time.time()
        window_start = current_time - self.window_seconds

        try:
            self.redis_client.zremrangebyscore(redis_key, 0, window_start)
            request_count = self.redis_client.zcard(redis_key)

            if request_count >= self.max_requests:
                oldest_request = self.redis_client.zrange(redis_key, 0, 0, withscores=True)
                if oldest_request:
                    retry_after = int(self.window_seconds - (current_time - oldest_request[0][1]))
                    return False, max(1, retry_after)
                return False, self.window_seconds

            self.redis_client.zadd(redis_key, {f"{current_time}:{request_count}": current_time})
            self.redis_client.expire(redis_key, self.window_seconds * 2)
            return True, 0

        except redis.RedisError as e:
            # Fail open
            logger.error(f"Rate limiter Redis error: {e}")
            return True, 0

    def _check_memory_rate_limit(self, key: str) -> tuple[bool, int]:
        current_time = time.time()
        window_start = current_time - self.window_seconds

        if current_time - self._last_sweep >= self.window_seconds:
            self._sweep_expired_windows(window_start)
            self._last_sweep = current_time

        requests = [t for t in self._in_memory_windows.get(key, []) if t > window_start]

        if len(requests) >= self.max_requests:
            self._in_memory_windows[key] = requests
            retry_after = int(self.window_seconds - (current_time - min(requests)))
            return False, max(1, retry_after)

        requests.append(current_time)
        self._in_memory_windows[key] = requests
        return True, 0

    def _sweep_expired_windows(self, window_start: float) -> None:
        """Drop clients with no request inside the current window."""
        expired = [key for key, times in self._in_memory_windows.items() if not times or times[-1] <= window_start]
        for key in expired:
            del self._in_memory_windows[key]


def get_rate_limiter(request: Request) -> RateLimiter:
    """Rate limiter attached to the app, created on first use."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter.from_env()
        request.app.state.rate_limiter = limiter
    return limiter


async def enforce_rate_limit(request: Request) -> None:
    """
    FastAPI dependency rejecting requests over the per-IP limit.

    Raises:
        HTTPException 429: With a Retry-After header
    """
    client_ip = request.client.host if request.client else "unknown"
    limiter = get_rate_limiter(request)

    allowed, retry_after = limiter.check_rate_limit(client_ip)
    if not allowed:
        logger.warning(f"Rate limit exceeded for IP: {client_ip} ({request.method} {request.url.path})")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )
