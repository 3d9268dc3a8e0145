"""
Redis caching service for villa calendars.

CACHING STRATEGY
================

What we cache:
  - The unavailable-dates list for a villa and calendar window
  - Cache key pattern: "calendar:{villa_id}:g{generation}:{window_start}:{window_end}"

Why:
  - Calendar rendering is the most frequent read on a listing page
  - Computing it touches both bookings and calendar_blocks

Invalidation strategy:
  - Every villa has a generation counter at "calendar-generation:{villa_id}"
  - On booking creation, confirmation or cancellation, and on host
    block/unblock: INCR the generation, then SCAN-delete the villa's old keys
  - TTL-based expiry as safety net

  Readers fetch the generation BEFORE computing a calendar and store the
  result under that generation. A calendar computed just before a booking
  commits lands under a generation nobody reads any more, so it can never
  be served after the booking's invalidation.

Why NOT cache is_range_free:
  - The booking commit must see the live state; the calendar is advisory
"""

import json
from datetime import date
from typing import Optional

from redis.exceptions import RedisError

from app.infrastructure.redis_client import get_redis
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_cache_operation

logger = get_logger(__name__)


def _generation_key(villa_id: int) -> str:
    return f"calendar-generation:{villa_id}"


def _make_calendar_key(villa_id: int, generation: int, window_start: date, window_end: date) -> str:
    return (
        f"calendar:{villa_id}:g{generation}:"
        f"{window_start.isoformat()}:{window_end.isoformat()}"
    )


async def get_calendar_generation(villa_id: int) -> Optional[int]:
    """Current cache generation of a villa, or None when caching is off."""
    client = await get_redis()
    if not client:
        return None

    try:
        value = await client.get(_generation_key(villa_id))
    except RedisError as e:
        logger.error("cache_generation_error", villa_id=villa_id, error=str(e))
        return None
    return int(value) if value is not None else 0


async def get_cached_calendar(
    villa_id: int, window_start: date, window_end: date, generation: Optional[int]
) -> Optional[list[date]]:
    """Retrieve cached unavailable dates, or None on miss."""
    if generation is None:
        return None
    client = await get_redis()
    if not client:
        return None

    key = _make_calendar_key(villa_id, generation, window_start, window_end)
    try:
        data = await client.get(key)
    except RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    if data is None:
        record_cache_operation("get", hit=False)
        logger.debug("cache_miss", key=key)
        return None

    record_cache_operation("get", hit=True)
    logger.debug("cache_hit", key=key)
    return [date.fromisoformat(day) for day in json.loads(data)]


async def set_cached_calendar(
    villa_id: int,
    window_start: date,
    window_end: date,
    unavailable_dates: list[date],
    generation: Optional[int],
) -> None:
    """Cache a calendar window with TTL under the generation it was computed in."""
    if generation is None:
        return
    client = await get_redis()
    if not client:
        return

    ttl = get_settings().REDIS_CACHE_TTL
    key = _make_calendar_key(villa_id, generation, window_start, window_end)
    try:
        await client.setex(key, ttl, json.dumps([day.isoformat() for day in unavailable_dates]))
        record_cache_operation("set", hit=False)
        logger.debug("cache_set", key=key, ttl=ttl)
    except RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_villa_calendar(villa_id: int) -> None:
    """Move the villa to a new generation and drop every cached window."""
    client = await get_redis()
    if not client:
        return

    try:
        generation = await client.incr(_generation_key(villa_id))
        deleted = 0
        async for key in client.scan_iter(match=f"calendar:{villa_id}:*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info(
            "cache_invalidated", villa_id=villa_id, generation=generation, keys_deleted=deleted
        )
    except RedisError as e:
        logger.error("cache_invalidation_error", villa_id=villa_id, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except RedisError as e:
        return {"status": "error", "error": str(e)}
