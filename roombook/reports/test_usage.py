from datetime import datetime

import pytest

from roombook.errors import Forbidden, ValidationError
from roombook.models import Booking
from roombook.reports.usage import ReportService, hour_label, week_key

MONDAY = datetime(2024, 1, 1)


@pytest.fixture
def reports(store):
    return ReportService(store, clock=lambda: datetime(2024, 1, 10))


@pytest.fixture
def usage(db, people, rooms):
    def book(room, start, end):
        db.add(Booking(room_id=rooms[room], user_id=people["faculty"],
                       start_at=start, end_at=end, purpose="Lecture"))

    book("open", datetime(2023, 12, 31, 10), datetime(2023, 12, 31, 12))
    book("open", datetime(2024, 1, 2, 10), datetime(2024, 1, 2, 12))
    book("open", datetime(2024, 1, 9, 9), datetime(2024, 1, 9, 10))
    book("restricted", datetime(2024, 1, 3, 13, 30), datetime(2024, 1, 3, 14, 30))
    book("restricted", datetime(2024, 1, 4, 10), datetime(2024, 1, 4, 10, 30))
    db.commit()


def test_week_and_hour_labels():
    assert week_key(datetime(2024, 1, 5)) == "2024-W01"
    assert week_key(datetime(2023, 1, 1)) == "2022-W52"
    assert [hour_label(h) for h in (0, 1, 11, 12, 13, 23)] == \
        ["12 AM", "1 AM", "11 AM", "12 PM", "1 PM", "11 PM"]


def test_utilization_per_room_and_week(reports, people, rooms, usage):
    by_room = {r["room_id"]: r for r in reports.utilization(people["admin"], start=MONDAY)}

    assert set(by_room) == {rooms["open"], rooms["restricted"], rooms["locked"]}
    seminar = by_room[rooms["open"]]
    assert seminar["total_hours"] == 3.0
    assert seminar["avg_hours_per_week"] == 1.5
    assert seminar["weekly_breakdown"] == [{"week": "2024-W01", "hours": 2.0},
                                           {"week": "2024-W02", "hours": 1.0}]
    assert by_room[rooms["restricted"]]["total_hours"] == 1.5
    assert by_room[rooms["locked"]] == {
        "room_id": rooms["locked"], "room_name": "Exam Hall", "building": None,
        "total_hours": 0.0, "avg_hours_per_week": 0.0, "weekly_breakdown": [],
    }


def test_peak_hours_count_every_hour_a_booking_touches(reports, people, usage):
    report = reports.peak_hours(people["admin"], start=MONDAY)
    counts = {p["hour"]: p["count"] for p in report["peak_hours"]}

    assert len(report["peak_hours"]) == 24
    assert (counts[9], counts[10], counts[11], counts[13], counts[14]) == (1, 2, 1, 1, 0)
    assert (report["peak_hour"], report["max_count"]) == (10, 2)


def test_default_window_counts_back_from_now(reports, people, usage):
    report = reports.peak_hours(people["admin"], weeks=1)
    assert report["max_count"] == 1
    assert report["peak_hour"] == 9


@pytest.mark.parametrize("weeks", [0, 53])
def test_weeks_out_of_range(reports, people, weeks):
    with pytest.raises(ValidationError):
        reports.utilization(people["admin"], weeks=weeks)


def test_reports_are_admin_only(reports, people):
    with pytest.raises(Forbidden):
        reports.utilization(people["faculty"])
    with pytest.raises(Forbidden):
        reports.peak_hours(people["student"])
