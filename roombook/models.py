from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime,
    JSON, ForeignKey, Text, Index, Enum as SAEnum
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum
import uuid

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ────────────────────────────────────────────────────────────────────

class Role(str, enum.Enum):
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    ADMIN = "ADMIN"

class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

class NotificationType(str, enum.Enum):
    REQUEST_SUBMITTED = "REQUEST_SUBMITTED"
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    REQUEST_MODIFIED = "REQUEST_MODIFIED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    OVERRIDE_CREATED = "OVERRIDE_CREATED"


# ── Core entities ─────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    role = Column(SAEnum(Role), nullable=False, default=Role.STUDENT)
    created_at = Column(DateTime, server_default=func.now())


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    building = Column(String, nullable=True)
    capacity = Column(Integer, nullable=False, default=1)
    equipment = Column(JSON, default=list)             # ["projector", "whiteboard"]
    is_active = Column(Boolean, default=True, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    restricted_roles = Column(JSON, nullable=True)     # ["FACULTY", "ADMIN"]; empty = anyone
    lock_version = Column(Integer, default=0, nullable=False)  # bumped by every booking write
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ── Requests + Bookings ───────────────────────────────────────────────────────

class BookingRequest(Base):
    __tablename__ = "booking_requests"

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, ForeignKey("rooms.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    start_at = Column(DateTime, nullable=False)        # naive UTC
    end_at = Column(DateTime, nullable=False)
    purpose = Column(Text, nullable=False)
    status = Column(SAEnum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    room = relationship("Room")
    user = relationship("User")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_room_start", "room_id", "start_at"),
    )

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, ForeignKey("rooms.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    purpose = Column(Text, nullable=False)
    is_override = Column(Boolean, default=False, nullable=False)
    created_from_request_id = Column(String, ForeignKey("booking_requests.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    room = relationship("Room")
    user = relationship("User")


# ── Side channels ─────────────────────────────────────────────────────────────

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    type = Column(SAEnum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    meta = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_user_id = Column(String, nullable=False)
    action_type = Column(String, nullable=False)       # "BOOKING_OVERRIDE_CREATED"
    target_type = Column(String, nullable=False)       # "Booking" | "BookingRequest" | "Room"
    target_id = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
