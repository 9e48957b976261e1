"""
rate_limit.py — Coarse per-IP limiter for the public endpoints.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address. This sits in front of the usage,
account-linking and profile endpoints only; the metered scan endpoint is
governed by the tiered RateLimiter in services/rate_limiter.py instead.

Usage in routes:
    @router.get("/api/usage")
    @limiter.limit(settings.public_rate_limit)
    async def my_endpoint(request: Request):
        ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
