"""
Booking lifecycle: request creation, admin decisions, cancellation,
override bookings and reschedules.

Every booking-writing path runs the same sequence inside one transaction:
  1. validate input and actor (no writes yet)
  2. take the room's write lock (store.lock_room)
  3. re-read whatever the decision depends on, under the lock
  4. conflict check (skipped only for overrides)
  5. write request/booking rows → commit
Only after the commit do the side effects run (cache invalidation, audit,
notification); none of them can fail the operation.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from roombook.booking import rules
from roombook.booking.schemas import (
    BookingRequestCreate, Decision, OverrideBookingCreate, Reschedule, parse,
)
from roombook.cache.store import invalidate_availability_range
from roombook.config import Settings
from roombook.errors import Conflict, Forbidden, NotFound
from roombook.models import Booking, BookingRequest, RequestStatus, Role, new_id
from roombook.notify import messages
from roombook.scheduling.conflicts import find_conflicts
from roombook.scheduling.intervals import to_utc, validate_interval
from roombook.store import BookingStore

logger = logging.getLogger(__name__)


@dataclass
class BookingOutcome:
    request: BookingRequest
    booking: Optional[Booking] = None


class BookingService:
    def __init__(self, store: BookingStore, cache=None, notifier=None,
                 auditor=None, settings: Optional[Settings] = None):
        self.store = store
        self.cache = cache
        self.notifier = notifier
        self.auditor = auditor
        self.settings = settings or Settings()

    # ── Create ────────────────────────────────────────────────────────────────

    def create_booking_request(self, actor_id: str, room_id: str,
                               start_at: datetime, end_at: datetime,
                               purpose: str) -> BookingOutcome:
        data = parse(BookingRequestCreate, room_id=room_id, start_at=start_at,
                     end_at=end_at, purpose=purpose)
        actor = rules.require_user(self.store.get_user(actor_id))
        room = rules.require_room(self.store.get_room(data.room_id))
        rules.room_is_bookable(room)
        rules.check_role_restriction(room, actor)

        auto = self.settings.auto_approve
        with self._transaction():
            self.store.lock_room(room.id)
            self.store.refresh(room)
            rules.room_is_bookable(room)
            self._assert_free(room.id, data.start_at, data.end_at,
                              suggest_override=actor.role == Role.ADMIN)

            request = self.store.add(BookingRequest(
                id=new_id(), room_id=room.id, user_id=actor.id,
                start_at=data.start_at, end_at=data.end_at, purpose=data.purpose,
                status=RequestStatus.APPROVED if auto else RequestStatus.PENDING,
            ))
            booking = None
            if auto:
                booking = self.store.add(Booking(
                    id=new_id(), room_id=room.id, user_id=actor.id,
                    start_at=data.start_at, end_at=data.end_at, purpose=data.purpose,
                    created_from_request_id=request.id,
                ))
            request_id, room_name = request.id, room.name
            booking_id = booking.id if booking else None

        if auto:
            logger.info("request %s auto-approved as booking %s in room %s",
                        request_id, booking_id, room_id)
            invalidate_availability_range(self.cache, room_id, data.start_at, data.end_at)
            self._audit(actor_id, "BOOKING_REQUEST_APPROVED", "BookingRequest",
                        request_id, "Auto-approved - instant booking")
            self._notify(messages.booking_approved, actor_id, request_id,
                         room_name, data.start_at, data.end_at)
        else:
            logger.info("request %s filed for room %s", request_id, room_id)
            self._audit(actor_id, "BOOKING_REQUEST_CREATED", "BookingRequest", request_id, None)
            self._notify(messages.request_submitted, actor_id, request_id,
                         room_name, data.start_at, data.end_at)

        return BookingOutcome(request=request, booking=booking)

    # ── Admin decision ────────────────────────────────────────────────────────

    def decide_request(self, actor_id: str, request_id: str, decision,
                       reason: Optional[str] = None,
                       start_at: Optional[datetime] = None,
                       end_at: Optional[datetime] = None) -> BookingOutcome:
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        data = parse(Decision, status=decision, reason=reason,
                     start_at=start_at, end_at=end_at)
        request = self._get_request(request_id)
        rules.require_pending(request.status, "modified")

        if data.status == RequestStatus.REJECTED:
            return self._reject(admin.id, request, data.reason)
        return self._approve(admin.id, request, data)

    def _approve(self, admin_id: str, request: BookingRequest, data: Decision) -> BookingOutcome:
        old_start, old_end = request.start_at, request.end_at
        new_start, new_end = validate_interval(
            data.start_at or old_start, data.end_at or old_end
        )
        times_modified = (new_start, new_end) != (old_start, old_end)

        with self._transaction():
            self.store.lock_room(request.room_id)
            self.store.refresh(request)
            rules.require_pending(request.status, "modified")
            self._assert_free(request.room_id, new_start, new_end,
                              message="Cannot approve: Room is already booked for this time period.",
                              suggest_override=True)

            request.status = RequestStatus.APPROVED
            request.start_at, request.end_at = new_start, new_end
            booking = self.store.add(Booking(
                id=new_id(), room_id=request.room_id, user_id=request.user_id,
                start_at=new_start, end_at=new_end, purpose=request.purpose,
                created_from_request_id=request.id,
            ))
            request_id, room_id, user_id = request.id, request.room_id, request.user_id
            room_name, booking_id = request.room.name, booking.id

        logger.info("request %s approved as booking %s", request_id, booking_id)
        invalidate_availability_range(self.cache, room_id, new_start, new_end)
        self._audit(admin_id, "BOOKING_REQUEST_APPROVED", "BookingRequest",
                    request_id, data.reason)
        if times_modified:
            self._notify(messages.booking_modified, user_id, request_id, room_name,
                         data.reason or "Time adjusted by administrator",
                         old_start, old_end, new_start, new_end)
        else:
            self._notify(messages.booking_approved, user_id, request_id,
                         room_name, new_start, new_end)
        return BookingOutcome(request=request, booking=booking)

    def _reject(self, admin_id: str, request: BookingRequest, reason: str) -> BookingOutcome:
        with self._transaction():
            self.store.lock_room(request.room_id)
            self.store.refresh(request)
            rules.require_pending(request.status, "modified")
            request.status = RequestStatus.REJECTED
            request_id, user_id, room_name = request.id, request.user_id, request.room.name

        logger.info("request %s rejected", request_id)
        self._audit(admin_id, "BOOKING_REQUEST_REJECTED", "BookingRequest", request_id, reason)
        self._notify(messages.booking_rejected, user_id, request_id, room_name, reason)
        return BookingOutcome(request=request)

    # ── Requester cancel ──────────────────────────────────────────────────────

    def cancel_request(self, actor_id: str, request_id: str) -> BookingRequest:
        actor = rules.require_user(self.store.get_user(actor_id))
        request = self._get_request(request_id)
        if request.user_id != actor.id:
            raise Forbidden("You can only cancel your own requests")
        rules.require_pending(request.status, "cancelled")

        with self._transaction():
            self.store.lock_room(request.room_id)
            self.store.refresh(request)
            rules.require_pending(request.status, "cancelled")
            request.status = RequestStatus.CANCELLED
            room_name = request.room.name

        logger.info("request %s cancelled by %s", request_id, actor_id)
        self._audit(actor_id, "BOOKING_REQUEST_CANCELLED", "BookingRequest",
                    request_id, "Cancelled by user")
        self._notify(messages.request_cancelled, actor_id, request_id, room_name)
        return request

    # ── Override ──────────────────────────────────────────────────────────────

    def create_override_booking(self, actor_id: str, room_id: str, user_id: str,
                                start_at: datetime, end_at: datetime,
                                purpose: str, reason: str) -> Booking:
        """
        Admin booking that skips the conflict check entirely. It still takes
        the room lock so it serialises with concurrent admissions, and once
        committed it blocks later normal requests like any booking.
        """
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        data = parse(OverrideBookingCreate, room_id=room_id, user_id=user_id,
                     start_at=start_at, end_at=end_at, purpose=purpose, reason=reason)
        room = rules.require_room(self.store.get_room(data.room_id))
        target = rules.require_user(self.store.get_user(data.user_id))

        with self._transaction():
            self.store.lock_room(room.id)
            booking = self.store.add(Booking(
                id=new_id(), room_id=room.id, user_id=target.id,
                start_at=data.start_at, end_at=data.end_at, purpose=data.purpose,
                is_override=True,
            ))
            booking_id, room_name = booking.id, room.name

        logger.info("override booking %s in room %s by %s", booking_id, room_id, admin.id)
        self._audit(admin.id, "BOOKING_OVERRIDE_CREATED", "Booking", booking_id, data.reason)
        self._notify(messages.override_created, target.id, booking_id, room_name,
                     data.start_at, data.end_at, data.reason)
        invalidate_availability_range(self.cache, room_id, data.start_at, data.end_at)
        return booking

    # ── Reschedule ────────────────────────────────────────────────────────────

    def reschedule_booking(self, actor_id: str, booking_id: str,
                           start_at: datetime, end_at: datetime,
                           reason: str) -> Booking:
        """
        Move an existing booking. Normal bookings are re-checked against every
        other booking in the room; override bookings keep their exemption.
        The request a booking was approved from follows it to the new times.
        """
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        data = parse(Reschedule, start_at=start_at, end_at=end_at, reason=reason)
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found")

        with self._transaction():
            self.store.lock_room(booking.room_id)
            self.store.refresh(booking)
            if not booking.is_override:
                self._assert_free(booking.room_id, data.start_at, data.end_at,
                                  exclude_booking_id=booking.id,
                                  message="Cannot reschedule: Room is already booked for this time period.",
                                  suggest_override=True)
            old_start, old_end = booking.start_at, booking.end_at
            booking.start_at, booking.end_at = data.start_at, data.end_at
            if booking.created_from_request_id:
                source = self.store.get_request(booking.created_from_request_id)
                if source is not None:
                    source.start_at, source.end_at = data.start_at, data.end_at
            room_id, user_id, room_name = booking.room_id, booking.user_id, booking.room.name

        logger.info("booking %s moved to [%s, %s)", booking_id,
                    data.start_at.isoformat(), data.end_at.isoformat())
        invalidate_availability_range(self.cache, room_id, old_start, old_end)
        invalidate_availability_range(self.cache, room_id, data.start_at, data.end_at)
        self._audit(admin.id, "BOOKING_RESCHEDULED", "Booking", booking_id, data.reason)
        self._notify(messages.booking_modified, user_id, booking_id, room_name, data.reason,
                     old_start, old_end, data.start_at, data.end_at)
        return booking

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_request(self, request_id: str) -> BookingRequest:
        return self._get_request(request_id)

    def list_requests(self, user_id: Optional[str] = None,
                      status: Optional[RequestStatus] = None) -> list[BookingRequest]:
        return self.store.list_requests(user_id=user_id, status=status)

    def list_bookings(self, room_id: Optional[str] = None,
                      start: Optional[datetime] = None,
                      end: Optional[datetime] = None) -> list[Booking]:
        return self.store.list_bookings(
            room_id=room_id,
            start=to_utc(start) if start else None,
            end=to_utc(end) if end else None,
        )

    # ── Helpers ───────────────────────────────────────────────────────────────

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

    def _get_request(self, request_id: str) -> BookingRequest:
        request = self.store.get_request(request_id)
        if request is None:
            raise NotFound("Booking request not found")
        return request

    def _assert_free(self, room_id: str, start: datetime, end: datetime,
                     exclude_booking_id: Optional[str] = None,
                     message: str = "Room is already booked for this time period.",
                     suggest_override: bool = False):
        conflicts = find_conflicts(self.store, room_id, start, end, exclude_booking_id)
        if conflicts:
            raise Conflict(message, [b.id for b in conflicts], suggest_override)

    def _audit(self, actor, action_type, target_type, target_id, reason):
        if self.auditor is not None:
            self.auditor.record(actor, action_type, target_type, target_id, reason)

    def _notify(self, builder, *args):
        if self.notifier is None:
            return
        try:
            builder(self.notifier, *args)
        except Exception:
            logger.exception("notification %s not dispatched", builder.__name__)
