"""
Room availability for one day, read through the availability cache.

Flow:
  cache hit  → return cached day view
  cache miss → generate slots + list the day's bookings → cache for TTL
  cache down → logged, treated as a miss
"""
import logging
from datetime import date, datetime
from typing import Union

from roombook.cache.store import AVAILABILITY_TTL, availability_key
from roombook.errors import NotFound
from roombook.scheduling.intervals import day_bounds, overlaps, utc_date
from roombook.scheduling.slots import fetch_day_bookings, iter_day_slots
from roombook.store import BookingStore

logger = logging.getLogger(__name__)


def _booking_dict(b) -> dict:
    return {
        "id": b.id,
        "room_id": b.room_id,
        "user_id": b.user_id,
        "start_at": b.start_at.isoformat(),
        "end_at": b.end_at.isoformat(),
        "purpose": b.purpose,
        "is_override": b.is_override,
    }


def get_room_availability(store: BookingStore, cache, room_id: str,
                          day: Union[date, datetime],
                          ttl: int = AVAILABILITY_TTL) -> dict:
    day = utc_date(day)
    key = availability_key(room_id, day)

    if cache is not None:
        try:
            cached = cache.get(key)
        except Exception as e:
            logger.warning("cache read failed for %s: %s", key, e)
            cached = None
        if cached:
            return cached

    if store.get_room(room_id) is None:
        raise NotFound("Room not found")

    day_start, day_end = day_bounds(day)
    bookings = fetch_day_bookings(store, room_id, day)
    result = {
        "date": day.isoformat(),
        "room_id": room_id,
        "time_slots": [s.to_dict() for s in iter_day_slots(day_start, day_end, bookings)],
        "bookings": [_booking_dict(b) for b in bookings
                     if overlaps(day_start, day_end, b.start_at, b.end_at)],
    }

    if cache is not None:
        try:
            cache.set(key, result, ttl)
        except Exception as e:
            logger.warning("cache write failed for %s: %s", key, e)

    return result
