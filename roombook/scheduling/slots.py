"""
Day slot generator. Splits a UTC day into 30-minute slots and marks each
one free or taken by the first booking (by start time) that overlaps it.

Bookings are fetched over a window one day wider on each side of the
target day to tolerate client/server timezone skew; slot boundaries
themselves always stay on the exact UTC day.
"""
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

from roombook.models import Booking
from roombook.scheduling.intervals import day_bounds, overlaps
from roombook.store import BookingStore

SLOT_MINUTES = 30
FETCH_MARGIN = timedelta(days=1)


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    is_available: bool
    booking_id: Optional[str] = None
    purpose: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["start"] = self.start.isoformat()
        data["end"] = self.end.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSlot":
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            is_available=data["is_available"],
            booking_id=data.get("booking_id"),
            purpose=data.get("purpose"),
        )


def iter_day_slots(day_start: datetime, day_end: datetime,
                   bookings: list[Booking]) -> Iterator[TimeSlot]:
    step = timedelta(minutes=SLOT_MINUTES)
    current = day_start
    while current < day_end:
        slot_end = current + step
        hit = next(
            (b for b in bookings if overlaps(current, slot_end, b.start_at, b.end_at)),
            None,
        )
        yield TimeSlot(
            start=current,
            end=slot_end,
            is_available=hit is None,
            booking_id=hit.id if hit else None,
            purpose=hit.purpose if hit else None,
        )
        current = slot_end


def fetch_day_bookings(store: BookingStore, room_id: str,
                       day: Union[date, datetime]) -> list[Booking]:
    """Bookings touching the widened window around the day, by start time."""
    day_start, day_end = day_bounds(day)
    return store.find_bookings_by_room(
        room_id, (day_start - FETCH_MARGIN, day_end + FETCH_MARGIN)
    )


def get_day_time_slots(store: BookingStore, room_id: str,
                       day: Union[date, datetime]) -> list[TimeSlot]:
    """48 contiguous slots covering [day 00:00, day+1 00:00) UTC."""
    day_start, day_end = day_bounds(day)
    bookings = fetch_day_bookings(store, room_id, day)
    return list(iter_day_slots(day_start, day_end, bookings))
