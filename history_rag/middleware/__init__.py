"""
Middleware package for request processing.
"""

from .rate_limiter import RateLimiter, enforce_rate_limit, get_rate_limiter

__all__ = ['RateLimiter', 'enforce_rate_limit', 'get_rate_limiter']
