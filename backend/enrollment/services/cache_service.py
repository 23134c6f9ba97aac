"""
Redis caching service for listing reads.

CACHING STRATEGY
================

What we cache:
  - Activity listing responses (paginated, JSON-serialized)
    Key pattern: "activities:list:page={page}&size={size}&status={status}&type={type}&q={keyword}"
  - Per-activity registration listings (admin view)
    Key pattern: "registrations:activity:{activity_id}:page={page}&limit={limit}&status={status}"

Invalidation strategy:
  - Any enroll / withdraw / status change: delete the activity listing keys
    (participant counts moved) and that activity's registration listing keys
  - Activity creation, status change or deletion: delete the activity listing keys
  - TTL-based expiry as safety net (5 minutes by default)

  Keys share a prefix per family so we can SCAN and delete them.

What we never cache:
  - Single-activity reads and anything the engine reads to make a decision.
    Capacity checks always go to the database; the cache is a read-side
    convenience only and may be disabled entirely (REDIS_ENABLED=false).

Every cache failure is logged and swallowed: a broken Redis degrades to
cache misses, never to failed requests.
"""

import json
import time
from typing import Optional

import redis.asyncio as redis

from enrollment.core.config import get_settings
from enrollment.core.logging import get_logger
from enrollment.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

ACTIVITY_LIST_PREFIX = "activities:list:"

_redis_client: Optional[redis.Redis] = None
_reconnect_after = 0.0


async def _connect() -> Optional[redis.Redis]:
    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
        await client.aclose()
        return None
    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


async def get_redis() -> Optional[redis.Redis]:
    """
    The shared client, connecting on first use. None when disabled or unreachable.

    After a failed connect, further attempts wait out REDIS_RECONNECT_COOLDOWN
    seconds so an unreachable Redis costs one connect timeout per window
    rather than one per request.
    """
    global _redis_client, _reconnect_after
    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is None:
        if time.monotonic() < _reconnect_after:
            return None
        _redis_client = await _connect()
        if _redis_client is None:
            _reconnect_after = time.monotonic() + settings.REDIS_RECONNECT_COOLDOWN
    return _redis_client


async def close_redis() -> None:
    global _redis_client, _reconnect_after
    _reconnect_after = 0.0
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def activity_list_key(
    page: int,
    page_size: int,
    status: Optional[str] = None,
    activity_type: Optional[str] = None,
    keyword: Optional[str] = None,
) -> str:
    return (
        f"{ACTIVITY_LIST_PREFIX}page={page}&size={page_size}"
        f"&status={status or ''}&type={activity_type or ''}&q={keyword or ''}"
    )


def registration_list_prefix(activity_id: int) -> str:
    return f"registrations:activity:{activity_id}:"


def registration_list_key(activity_id: int, page: int, limit: int, status: Optional[str] = None) -> str:
    return f"{registration_list_prefix(activity_id)}page={page}&limit={limit}&status={status or ''}"


async def get_cached(key: str) -> Optional[dict]:
    """Retrieve a cached response body."""
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        if data:
            logger.debug("cache_hit", key=key)
            record_cache_operation("get", "hit")
            return json.loads(data)
        logger.debug("cache_miss", key=key)
        record_cache_operation("get", "miss")
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))
        record_cache_operation("get", "error")

    return None


async def set_cached(key: str, data: dict, ttl: Optional[int] = None) -> None:
    """Cache a response body with TTL."""
    client = await get_redis()
    if not client:
        return

    ttl = ttl or settings.REDIS_CACHE_TTL
    try:
        await client.setex(key, ttl, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=ttl)
        record_cache_operation("set", "ok")
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))
        record_cache_operation("set", "error")


async def invalidate(prefix: str) -> int:
    """Delete every key starting with `prefix`. Returns the number of keys removed."""
    client = await get_redis()
    if not client:
        return 0

    deleted = 0
    try:
        async for key in client.scan_iter(match=f"{prefix}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", prefix=prefix, keys_deleted=deleted)
        record_cache_operation("invalidate", "ok")
    except Exception as e:
        logger.error("cache_invalidation_error", prefix=prefix, error=str(e))
        record_cache_operation("invalidate", "error")
    return deleted


async def invalidate_activity_cache() -> None:
    await invalidate(ACTIVITY_LIST_PREFIX)


async def invalidate_registration_cache(activity_id: int) -> None:
    """Registration changes move participant counts, so activity listings go too."""
    await invalidate(registration_list_prefix(activity_id))
    await invalidate(ACTIVITY_LIST_PREFIX)


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        keyspace = await client.info("keyspace")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            "keys": keyspace,
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
