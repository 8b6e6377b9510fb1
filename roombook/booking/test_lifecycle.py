"""
Booking lifecycle end-to-end on SQLite: create, approve, reject, cancel,
override, reschedule, plus a sequential fuzz of the no-double-booking rule.
"""
import random
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from roombook.booking.lifecycle import BookingService
from roombook.cache.store import availability_key
from roombook.config import Settings
from roombook.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from roombook.models import (
    AuditLog, Booking, Notification, NotificationType, RequestStatus,
)
from roombook.scheduling.availability import get_room_availability
from roombook.scheduling.intervals import overlaps


def at(hour, minute=0, day=5):
    return datetime(2024, 1, day, hour, minute)


def _audit_actions(db):
    return [a.action_type for a in db.scalars(select(AuditLog).order_by(AuditLog.id))]


def _notification_types(db, user_id):
    return [n.type for n in db.scalars(select(Notification).where(Notification.user_id == user_id))]


def _assert_no_double_booking(db, room_id):
    normal = list(db.scalars(select(Booking).where(Booking.room_id == room_id,
                                                   Booking.is_override.is_(False))))
    for i, a in enumerate(normal):
        for b in normal[i + 1:]:
            assert not overlaps(a.start_at, a.end_at, b.start_at, b.end_at), (a.id, b.id)


# ── Create (auto-approve) ─────────────────────────────────────────────────────

def test_auto_approved_request_creates_linked_booking(db, service, people, rooms):
    outcome = service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "  Study group\x07 "
    )

    assert outcome.request.status == RequestStatus.APPROVED
    assert outcome.booking.created_from_request_id == outcome.request.id
    assert outcome.booking.purpose == "Study group"
    assert not outcome.booking.is_override
    assert _audit_actions(db) == ["BOOKING_REQUEST_APPROVED"]
    assert _notification_types(db, people["student"]) == [NotificationType.REQUEST_APPROVED]


def test_overlapping_request_conflicts_and_adjacent_one_succeeds(db, service, people, rooms):
    service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")

    with pytest.raises(Conflict):
        service.create_booking_request(people["student"], rooms["open"], at(10, 30), at(11, 30), "Study")

    outcome = service.create_booking_request(people["student"], rooms["open"], at(11), at(12), "Study")
    assert outcome.booking is not None
    assert db.query(Booking).count() == 2


def test_conflict_writes_nothing(db, service, people, rooms):
    service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")
    before = (db.query(Booking).count(), _audit_actions(db))

    with pytest.raises(Conflict) as err:
        service.create_booking_request(people["student"], rooms["open"], at(10), at(10, 30), "Study")

    assert err.value.conflicting_ids
    assert (db.query(Booking).count(), _audit_actions(db)) == before


def test_only_admin_conflicts_point_at_override_booking(service, people, rooms):
    service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")

    with pytest.raises(Conflict) as admin_err:
        service.create_booking_request(people["admin"], rooms["open"], at(10), at(11), "Board meeting")
    with pytest.raises(Conflict) as student_err:
        service.create_booking_request(people["student"], rooms["open"], at(10), at(11), "Study")

    assert "override booking" in admin_err.value.message
    assert "override" not in student_err.value.message


def test_role_restricted_room_forbids_students(service, people, rooms):
    with pytest.raises(Forbidden):
        service.create_booking_request(people["student"], rooms["restricted"], at(10), at(11), "Lab")
    outcome = service.create_booking_request(people["faculty"], rooms["restricted"], at(10), at(11), "Lab")
    assert outcome.booking is not None


def test_locked_and_inactive_rooms_refuse_requests(service, people, rooms):
    with pytest.raises(InvalidState, match="locked"):
        service.create_booking_request(people["faculty"], rooms["locked"], at(10), at(11), "Exam")
    with pytest.raises(InvalidState, match="not active"):
        service.create_booking_request(people["faculty"], rooms["inactive"], at(10), at(11), "Exam")


def test_unknown_room_or_user(service, people):
    with pytest.raises(NotFound):
        service.create_booking_request(people["student"], "no-room", at(10), at(11), "x")
    with pytest.raises(NotFound):
        service.create_booking_request("no-user", "r-open", at(10), at(11), "x")


@pytest.mark.parametrize("start,end,purpose", [
    (at(11), at(10), "Reversed"),
    (at(10), at(10), "Empty"),
    (at(10), at(11), "   "),
    (at(10), at(11), "x" * 501),
])
def test_invalid_input_is_rejected_before_any_write(db, service, people, rooms, start, end, purpose):
    with pytest.raises(ValidationError):
        service.create_booking_request(people["student"], rooms["open"], start, end, purpose)
    assert db.query(Booking).count() == 0


def test_booking_invalidates_cached_day(store, cache, service, people, rooms):
    day = date(2024, 1, 5)
    get_room_availability(store, cache, rooms["open"], day)
    assert availability_key(rooms["open"], day) in cache.keys()

    service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")

    assert availability_key(rooms["open"], day) not in cache.keys()


# ── Create (approval workflow) ────────────────────────────────────────────────

def test_pending_request_has_no_booking(db, approval_service, people, rooms):
    outcome = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    )
    assert outcome.request.status == RequestStatus.PENDING
    assert outcome.booking is None
    assert db.query(Booking).count() == 0
    assert _notification_types(db, people["student"]) == [NotificationType.REQUEST_SUBMITTED]


def test_approve_creates_booking(db, approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request

    outcome = approval_service.decide_request(people["admin"], req.id, "APPROVED", "Looks fine")

    assert outcome.request.status == RequestStatus.APPROVED
    assert outcome.booking.created_from_request_id == req.id
    assert (outcome.booking.start_at, outcome.booking.end_at) == (at(10), at(11))
    assert NotificationType.REQUEST_APPROVED in _notification_types(db, people["student"])
    assert _audit_actions(db)[-1] == "BOOKING_REQUEST_APPROVED"


def test_approve_with_new_times_sends_modified_notice(db, approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request

    outcome = approval_service.decide_request(
        people["admin"], req.id, "APPROVED", "Moved to the afternoon",
        start_at=at(14), end_at=at(15),
    )

    assert (outcome.request.start_at, outcome.request.end_at) == (at(14), at(15))
    assert (outcome.booking.start_at, outcome.booking.end_at) == (at(14), at(15))
    assert _notification_types(db, people["student"])[-1] == NotificationType.REQUEST_MODIFIED


def test_approve_with_only_end_time_keeps_start(approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    outcome = approval_service.decide_request(people["admin"], req.id, "APPROVED", end_at=at(10, 30))
    assert (outcome.booking.start_at, outcome.booking.end_at) == (at(10), at(10, 30))


def test_approve_with_reversed_new_times_is_invalid(approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    with pytest.raises(ValidationError):
        approval_service.decide_request(people["admin"], req.id, "APPROVED", start_at=at(12))


def test_approve_after_room_got_booked_conflicts_and_stays_pending(db, approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    approval_service.create_override_booking(
        people["admin"], rooms["open"], people["faculty"], at(10, 30), at(12),
        "Department meeting", "Head of department needs the room",
    )

    with pytest.raises(Conflict) as err:
        approval_service.decide_request(people["admin"], req.id, "APPROVED", "ok")

    assert "override" in err.value.message
    db.expire_all()
    assert approval_service.get_request(req.id).status == RequestStatus.PENDING
    assert db.query(Booking).filter(Booking.created_from_request_id == req.id).count() == 0


def test_only_admins_decide(approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    with pytest.raises(Forbidden):
        approval_service.decide_request(people["faculty"], req.id, "APPROVED")


def test_decision_must_be_approve_or_reject(approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    with pytest.raises(ValidationError):
        approval_service.decide_request(people["admin"], req.id, "CANCELLED")


def test_reject_requires_real_justification(db, approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request

    with pytest.raises(ValidationError):
        approval_service.decide_request(people["admin"], req.id, "REJECTED")
    with pytest.raises(ValidationError):
        approval_service.decide_request(people["admin"], req.id, "REJECTED", "too short")

    outcome = approval_service.decide_request(
        people["admin"], req.id, "REJECTED", "Room reserved for exams that week"
    )
    assert outcome.request.status == RequestStatus.REJECTED
    assert outcome.booking is None
    assert _notification_types(db, people["student"])[-1] == NotificationType.REQUEST_REJECTED
    reject = db.scalars(select(AuditLog).where(AuditLog.action_type == "BOOKING_REQUEST_REJECTED")).one()
    assert reject.reason == "Room reserved for exams that week"


def test_decided_requests_are_final(approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request
    approval_service.decide_request(people["admin"], req.id, "REJECTED", "Room reserved for exams")

    with pytest.raises(InvalidState):
        approval_service.decide_request(people["admin"], req.id, "APPROVED")
    with pytest.raises(InvalidState):
        approval_service.cancel_request(people["student"], req.id)


def test_unknown_request(approval_service, people):
    with pytest.raises(NotFound):
        approval_service.decide_request(people["admin"], "nope", "APPROVED")
    with pytest.raises(NotFound):
        approval_service.cancel_request(people["student"], "nope")


# ── Cancel ────────────────────────────────────────────────────────────────────

def test_owner_cancels_pending_request(db, approval_service, people, rooms):
    req = approval_service.create_booking_request(
        people["student"], rooms["open"], at(10), at(11), "Study"
    ).request

    with pytest.raises(Forbidden):
        approval_service.cancel_request(people["other"], req.id)

    cancelled = approval_service.cancel_request(people["student"], req.id)
    assert cancelled.status == RequestStatus.CANCELLED
    assert _audit_actions(db)[-1] == "BOOKING_REQUEST_CANCELLED"
    assert _notification_types(db, people["student"])[-1] == NotificationType.REQUEST_CANCELLED

    with pytest.raises(InvalidState):
        approval_service.cancel_request(people["student"], req.id)


# ── Override ──────────────────────────────────────────────────────────────────

def test_override_skips_check_then_blocks_others(db, service, people, rooms):
    service.create_booking_request(people["faculty"], rooms["open"], at(9, 30), at(9, 45), "Office hours")

    override = service.create_override_booking(
        people["admin"], rooms["open"], people["faculty"], at(9), at(10),
        "Accreditation visit", "Visit scheduled by the dean",
    )
    assert override.is_override

    with pytest.raises(Conflict):
        service.create_booking_request(people["student"], rooms["open"], at(9, 15), at(9, 35), "Study")

    assert _audit_actions(db)[-1] == "BOOKING_OVERRIDE_CREATED"
    assert NotificationType.OVERRIDE_CREATED in _notification_types(db, people["faculty"])


def test_override_requires_admin_and_justification(service, people, rooms):
    with pytest.raises(Forbidden):
        service.create_override_booking(people["faculty"], rooms["open"], people["faculty"],
                                        at(9), at(10), "Meeting", "Because I said so")
    with pytest.raises(ValidationError):
        service.create_override_booking(people["admin"], rooms["open"], people["faculty"],
                                        at(9), at(10), "Meeting", "urgent")
    with pytest.raises(ValidationError):
        service.create_override_booking(people["admin"], rooms["open"], people["faculty"],
                                        at(10), at(9), "Meeting", "Dean requested it")


def test_override_needs_existing_room_and_user(service, people, rooms):
    with pytest.raises(NotFound):
        service.create_override_booking(people["admin"], "no-room", people["faculty"],
                                        at(9), at(10), "Meeting", "Dean requested it")
    with pytest.raises(NotFound):
        service.create_override_booking(people["admin"], rooms["open"], "no-user",
                                        at(9), at(10), "Meeting", "Dean requested it")


# ── Reschedule ────────────────────────────────────────────────────────────────

def test_reschedule_checks_against_everyone_but_itself(db, service, people, rooms):
    first = service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture").booking
    service.create_booking_request(people["faculty"], rooms["open"], at(12), at(13), "Seminar")

    # overlapping its own old slot is fine
    moved = service.reschedule_booking(people["admin"], first.id, at(10, 30), at(11, 30),
                                       "Lecturer running late")
    assert (moved.start_at, moved.end_at) == (at(10, 30), at(11, 30))

    with pytest.raises(Conflict):
        service.reschedule_booking(people["admin"], first.id, at(11, 30), at(12, 30),
                                   "Clash with the seminar")
    _assert_no_double_booking(db, rooms["open"])
    assert _notification_types(db, people["faculty"])[-1] == NotificationType.REQUEST_MODIFIED


def test_reschedule_moves_the_source_request_too(db, service, people, rooms):
    outcome = service.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")

    service.reschedule_booking(people["admin"], outcome.booking.id, at(14), at(15), "Room swap")

    db.expire_all()
    request = service.store.get_request(outcome.request.id)
    assert (request.start_at, request.end_at) == (at(14), at(15))


def test_reschedule_unknown_booking(service, people):
    with pytest.raises(NotFound):
        service.reschedule_booking(people["admin"], "nope", at(10), at(11), "Moving it along")


# ── Side effects never fail the operation ─────────────────────────────────────

class _ExplodingNotifier:
    def notify(self, *args, **kwargs):
        raise RuntimeError("smtp exploded")


class _ExplodingSessionFactory:
    def __call__(self):
        raise RuntimeError("audit db gone")


def test_notification_and_audit_failures_are_swallowed(db, store, cache, people, rooms):
    from roombook.audit.recorder import AuditRecorder

    svc = BookingService(store, cache=cache, notifier=_ExplodingNotifier(),
                         auditor=AuditRecorder(_ExplodingSessionFactory()),
                         settings=Settings(database_url="sqlite://"))
    outcome = svc.create_booking_request(people["faculty"], rooms["open"], at(10), at(11), "Lecture")
    assert outcome.booking is not None
    assert db.query(Booking).count() == 1


# ── Safety property ───────────────────────────────────────────────────────────

def test_sequential_fuzz_never_double_books(db, store, cache, notifier, auditor, people, rooms):
    rng = random.Random(42)
    auto = BookingService(store, cache=cache, notifier=notifier, auditor=auditor,
                          settings=Settings(database_url="sqlite://", auto_approve=True))
    manual = BookingService(store, cache=cache, notifier=notifier, auditor=auditor,
                            settings=Settings(database_url="sqlite://", auto_approve=False))
    pending = []
    day_start = at(0)

    for _ in range(120):
        start = day_start + timedelta(minutes=15 * rng.randrange(0, 90))
        end = start + timedelta(minutes=15 * rng.randrange(1, 12))
        action = rng.random()
        try:
            if action < 0.4:
                auto.create_booking_request(people["faculty"], rooms["open"], start, end, "Fuzz")
            elif action < 0.7:
                pending.append(manual.create_booking_request(
                    people["student"], rooms["open"], start, end, "Fuzz").request.id)
            elif pending:
                req_id = pending.pop(rng.randrange(len(pending)))
                manual.decide_request(people["admin"], req_id, "APPROVED")
        except Conflict:
            pass

    _assert_no_double_booking(db, rooms["open"])
    assert db.query(Booking).count() > 0
