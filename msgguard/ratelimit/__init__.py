"""Fixed-window rate limiting."""

from msgguard.ratelimit.limiter import RateLimiter, RateLimitResult

__all__ = ["RateLimiter", "RateLimitResult"]
