"""Fixed-window rate limiting for the credential endpoints.

Counters live in redis so every API worker shares them; when redis is
unreachable each process falls back to its own in-memory window. Rejections
carry a ``Retry-After`` header with the seconds left in the window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings

logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _hit_redis(key: str, window_seconds: int) -> Tuple[int, int]:
    """Count one request in redis; return (count, seconds until reset)."""
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        count = await client.incr(key)
        if count == 1:
            await client.expire(key, window_seconds)
            return count, window_seconds
        ttl = await client.ttl(key)
        return count, ttl if ttl > 0 else window_seconds
    finally:
        await client.aclose()


async def _hit_local(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
    return count, max(int(reset_at - now), 1)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Return a dependency allowing ``limit`` requests per client per window."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"fynd:rate:{prefix}:{_client_identifier(request)}"
        try:
            count, retry_after = await _hit_redis(key, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("Redis rate limit unavailable, using local counters: %s", exc)
            count, retry_after = await _hit_local(key, window_seconds)

        if count > limit:
            logger.info("rate_limited bucket=%s count=%s", prefix, count)
            raise HTTPException(
                status_code=429,
                detail=f"Too many {prefix.replace('_', ' ')} attempts. Try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
