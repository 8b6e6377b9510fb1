"""
Persistence interface for the booking core.

Thin repository over a SQLAlchemy Session. Connectivity failures are
translated to StoreUnavailable so callers fail closed instead of treating
an unreachable database as "no bookings".
"""
import functools
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from roombook.errors import StoreUnavailable
from roombook.models import (
    AuditLog, Booking, BookingRequest, Notification, RequestStatus, Room, User,
)

logger = logging.getLogger(__name__)


def _guarded(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error("store call %s failed: %s", fn.__name__, e)
            self.db.rollback()
            raise StoreUnavailable("Booking store is unavailable") from e
    return wrapper


class BookingStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Lookups ───────────────────────────────────────────────────────────────

    @_guarded
    def get_room(self, room_id: str) -> Optional[Room]:
        return self.db.get(Room, room_id)

    @_guarded
    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    @_guarded
    def get_request(self, request_id: str) -> Optional[BookingRequest]:
        return self.db.get(BookingRequest, request_id)

    @_guarded
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    @_guarded
    def find_bookings_by_room(
        self,
        room_id: str,
        time_range: Optional[tuple[datetime, datetime]] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> list[Booking]:
        """
        Bookings of a room ordered by start. time_range only narrows the
        candidate set; callers still apply the exact overlap test.
        """
        stmt = select(Booking).where(Booking.room_id == room_id)
        if time_range is not None:
            range_start, range_end = time_range
            stmt = stmt.where(Booking.start_at < range_end, Booking.end_at > range_start)
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        stmt = stmt.order_by(Booking.start_at, Booking.id)
        return list(self.db.scalars(stmt))

    @_guarded
    def list_bookings(self, room_id: Optional[str] = None,
                      start: Optional[datetime] = None,
                      end: Optional[datetime] = None) -> list[Booking]:
        stmt = select(Booking)
        if room_id:
            stmt = stmt.where(Booking.room_id == room_id)
        if start is not None:
            stmt = stmt.where(Booking.end_at > start)
        if end is not None:
            stmt = stmt.where(Booking.start_at < end)
        return list(self.db.scalars(stmt.order_by(Booking.start_at, Booking.id)))

    @_guarded
    def list_requests(self, user_id: Optional[str] = None,
                      status: Optional[RequestStatus] = None) -> list[BookingRequest]:
        stmt = select(BookingRequest)
        if user_id:
            stmt = stmt.where(BookingRequest.user_id == user_id)
        if status is not None:
            stmt = stmt.where(BookingRequest.status == status)
        return list(self.db.scalars(stmt.order_by(BookingRequest.created_at.desc())))

    @_guarded
    def bookings_starting_from(self, start: datetime) -> list[Booking]:
        stmt = select(Booking).where(Booking.start_at >= start)
        return list(self.db.scalars(stmt.order_by(Booking.start_at, Booking.id)))

    # ── Rooms ─────────────────────────────────────────────────────────────────

    @_guarded
    def list_rooms(self, min_capacity: Optional[int] = None,
                   building: Optional[str] = None,
                   active_only: bool = True) -> list[Room]:
        stmt = select(Room)
        if active_only:
            stmt = stmt.where(Room.is_active.is_(True))
        if min_capacity is not None:
            stmt = stmt.where(Room.capacity >= min_capacity)
        if building:
            stmt = stmt.where(Room.building.ilike(f"%{building}%"))
        return list(self.db.scalars(stmt.order_by(Room.building, Room.name)))

    @_guarded
    def building_room_counts(self) -> list[tuple[str, int]]:
        stmt = (
            select(Room.building, func.count(Room.id))
            .where(Room.is_active.is_(True), Room.building.is_not(None))
            .group_by(Room.building)
            .order_by(Room.building)
        )
        return [(name, count) for name, count in self.db.execute(stmt)]

    # ── Notifications + audit ─────────────────────────────────────────────────

    @_guarded
    def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self.db.get(Notification, notification_id)

    @_guarded
    def list_notifications(self, user_id: str, unread_only: bool = False,
                           limit: int = 50) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
        return list(self.db.scalars(stmt))

    @_guarded
    def count_unread(self, user_id: str) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
        return self.db.scalar(stmt)

    @_guarded
    def mark_all_read(self, user_id: str) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @_guarded
    def list_audit(self, action_type: Optional[str] = None,
                   target_type: Optional[str] = None,
                   actor_user_id: Optional[str] = None,
                   limit: int = 100) -> list[AuditLog]:
        stmt = select(AuditLog)
        if action_type:
            stmt = stmt.where(AuditLog.action_type == action_type)
        if target_type:
            stmt = stmt.where(AuditLog.target_type == target_type)
        if actor_user_id:
            stmt = stmt.where(AuditLog.actor_user_id == actor_user_id)
        return list(self.db.scalars(stmt.order_by(AuditLog.id.desc()).limit(limit)))

    # ── Writes ────────────────────────────────────────────────────────────────

    @_guarded
    def lock_room(self, room_id: str) -> bool:
        """
        Take the room's write lock for the rest of the current transaction.
        Must run before the conflict check of any booking write.
        Returns False when the room row does not exist.
        """
        result = self.db.execute(
            update(Room)
            .where(Room.id == room_id)
            .values(lock_version=Room.lock_version + 1, updated_at=Room.updated_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add(self, obj):
        self.db.add(obj)
        return obj

    @_guarded
    def flush(self):
        self.db.flush()

    @_guarded
    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    @_guarded
    def refresh(self, obj):
        self.db.refresh(obj)
        return obj
