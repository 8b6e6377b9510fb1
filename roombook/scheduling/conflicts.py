"""
Conflict checker: is a proposed interval free for a room?

Only confirmed Bookings count (requests never block). Override bookings
block like any other once they exist, even though they skipped this check
when they were created.
"""
import logging
from datetime import datetime
from typing import Optional

from roombook.models import Booking
from roombook.scheduling.intervals import overlaps, to_utc
from roombook.store import BookingStore

logger = logging.getLogger(__name__)


def find_conflicts(store: BookingStore, room_id: str,
                   start: datetime, end: datetime,
                   exclude_booking_id: Optional[str] = None) -> list[Booking]:
    """
    Bookings of room_id overlapping [start, end), earliest first.
    Store errors propagate as StoreUnavailable; never swallowed here.
    """
    start, end = to_utc(start), to_utc(end)
    candidates = store.find_bookings_by_room(
        room_id, (start, end), exclude_booking_id=exclude_booking_id
    )
    conflicts = [
        b for b in candidates
        if b.id != exclude_booking_id and overlaps(start, end, b.start_at, b.end_at)
    ]
    if conflicts:
        logger.warning(
            "room %s conflict for [%s, %s): %s",
            room_id, start.isoformat(), end.isoformat(),
            [b.id for b in conflicts],
        )
    return conflicts


def has_conflict(store: BookingStore, room_id: str,
                 start: datetime, end: datetime,
                 exclude_booking_id: Optional[str] = None) -> bool:
    return bool(find_conflicts(store, room_id, start, end, exclude_booking_id))
