"""
Availability cache: non-authoritative read-through store for day views.

Two backends share one small surface (get / set / delete / invalidate):
  InMemoryCache  → per-process dict with expiry, used in tests and when no
                   REDIS_URL is configured
  RedisCache     → redis-py client, JSON values, SETEX for TTL

Keys: availability:{room_id}:{YYYY-MM-DD}
Callers treat every cache error as a miss; nothing here is ever consulted
for conflict checks.
"""
import fnmatch
import json
import logging
import threading
import time
from datetime import date, datetime
from typing import Any, Optional

import redis

from roombook.scheduling.intervals import dates_spanned

logger = logging.getLogger(__name__)

AVAILABILITY_TTL = 300   # 5 minutes


def availability_key(room_id: str, day: date) -> str:
    return f"availability:{room_id}:{day.isoformat()}"


def availability_pattern(room_id: str) -> str:
    return f"availability:{room_id}:*"


# ── Backends ──────────────────────────────────────────────────────────────────

class InMemoryCache:
    def __init__(self, clock=time.monotonic):
        self._data: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return json.loads(value)

    def set(self, key: str, value: Any, ttl: int = AVAILABILITY_TTL):
        # stored serialised; every get hands out a fresh copy
        with self._lock:
            self._data[key] = (json.dumps(value), self._clock() + ttl)

    def delete(self, key: str):
        with self._lock:
            self._data.pop(key, None)

    def invalidate(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
        return len(keys)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class RedisCache:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, ttl: int = AVAILABILITY_TTL):
        self.client.setex(key, ttl, json.dumps(value))

    def delete(self, key: str):
        self.client.delete(key)

    def invalidate(self, pattern: str) -> int:
        keys = list(self.client.scan_iter(match=pattern))
        if keys:
            self.client.delete(*keys)
        return len(keys)


def build_cache(redis_url: Optional[str]):
    if redis_url:
        return RedisCache.from_url(redis_url)
    return InMemoryCache()


# ── Invalidation helpers (never raise) ────────────────────────────────────────

def invalidate_availability(cache, room_id: str, day: date):
    if cache is None:
        return
    key = availability_key(room_id, day)
    try:
        cache.delete(key)
    except Exception as e:
        logger.warning("cache delete failed for %s: %s", key, e)


def invalidate_availability_range(cache, room_id: str,
                                  start: datetime, end: datetime):
    """Drop every cached day view from start's date to end's date."""
    for day in dates_spanned(start, end):
        invalidate_availability(cache, room_id, day)


def invalidate_room(cache, room_id: str):
    if cache is None:
        return
    try:
        cache.invalidate(availability_pattern(room_id))
    except Exception as e:
        logger.warning("cache invalidation failed for room %s: %s", room_id, e)
