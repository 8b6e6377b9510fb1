"""
Admin usage reports over confirmed bookings.

  utilization → booked hours per active room, total + per ISO week
  peak_hours  → how many bookings touch each hour of the UTC day

Both look at bookings starting on or after `start` (default: `weeks`
weeks back from now).
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from roombook.booking import rules
from roombook.errors import ValidationError
from roombook.scheduling.intervals import to_utc
from roombook.store import BookingStore

MAX_WEEKS = 52


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def week_key(dt: datetime) -> str:
    """2024-01-05 → '2024-W01'"""
    year, week, _ = dt.isocalendar()
    return f"{year}-W{week:02d}"


def hour_label(hour: int) -> str:
    if hour == 0:
        return "12 AM"
    if hour < 12:
        return f"{hour} AM"
    if hour == 12:
        return "12 PM"
    return f"{hour - 12} PM"


class ReportService:
    def __init__(self, store: BookingStore, clock=_utcnow):
        self.store = store
        self.clock = clock

    def utilization(self, actor_id: str, start: Optional[datetime] = None,
                    weeks: int = 4) -> list[dict]:
        self._require_admin(actor_id)
        bookings = self.store.bookings_starting_from(self._since(start, weeks))

        by_room = defaultdict(list)
        for b in bookings:
            by_room[b.room_id].append(b)

        report = []
        for room in self.store.list_rooms():
            weekly = defaultdict(float)
            for b in by_room.get(room.id, []):
                weekly[week_key(b.start_at)] += (b.end_at - b.start_at).total_seconds() / 3600
            total = sum(weekly.values())
            report.append({
                "room_id": room.id,
                "room_name": room.name,
                "building": room.building,
                "total_hours": round(total, 1),
                "avg_hours_per_week": round(total / (len(weekly) or 1), 1),
                "weekly_breakdown": [
                    {"week": week, "hours": round(hours, 1)}
                    for week, hours in sorted(weekly.items())
                ],
            })
        return report

    def peak_hours(self, actor_id: str, start: Optional[datetime] = None,
                   weeks: int = 4) -> dict:
        self._require_admin(actor_id)
        counts = [0] * 24
        for b in self.store.bookings_starting_from(self._since(start, weeks)):
            current = b.start_at
            while current < b.end_at:
                counts[current.hour] += 1
                current += timedelta(hours=1)

        max_count = max(counts)
        return {
            "peak_hours": [
                {"hour": h, "label": hour_label(h), "count": c}
                for h, c in enumerate(counts)
            ],
            "peak_hour": counts.index(max_count),
            "max_count": max_count,
        }

    def _require_admin(self, actor_id: str):
        rules.require_admin(rules.require_user(self.store.get_user(actor_id)))

    def _since(self, start: Optional[datetime], weeks: int) -> datetime:
        if start is not None:
            return to_utc(start)
        if not 1 <= weeks <= MAX_WEEKS:
            raise ValidationError(f"weeks: Must be between 1 and {MAX_WEEKS}")
        return self.clock() - timedelta(weeks=weeks)
