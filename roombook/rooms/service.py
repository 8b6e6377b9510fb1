"""
Room discovery and administration: list, detail, buildings, create, update,
soft delete.
Rooms are never removed; deactivation keeps their booking history intact.
"""
import logging
from typing import Optional

from pydantic import BaseModel, field_validator

from roombook.booking import rules
from roombook.booking.schemas import parse, sanitize_string
from roombook.cache.store import invalidate_room
from roombook.errors import ValidationError
from roombook.models import Role, Room, new_id
from roombook.store import BookingStore

logger = logging.getLogger(__name__)

NOT_NULL = {"name", "capacity", "is_active", "is_locked"}


class RoomFields(BaseModel):
    name: Optional[str] = None
    building: Optional[str] = None
    capacity: Optional[int] = None
    equipment: Optional[list[str]] = None
    restricted_roles: Optional[list[Role]] = None
    is_active: Optional[bool] = None
    is_locked: Optional[bool] = None

    @field_validator("name", "building")
    @classmethod
    def clean_text(cls, v):
        if v is None:
            return v
        v = sanitize_string(v)
        assert v, "Must not be blank"
        return v

    @field_validator("capacity")
    @classmethod
    def positive(cls, v):
        assert v is None or v >= 1, "Capacity must be at least 1"
        return v

    @field_validator("equipment")
    @classmethod
    def as_tag_set(cls, v):
        if v is None:
            return v
        return sorted({sanitize_string(t) for t in v if sanitize_string(t)})

    @field_validator("restricted_roles")
    @classmethod
    def unique_roles(cls, v):
        if v is None:
            return v
        return sorted({Role(r) for r in v}, key=lambda r: r.value)


class RoomCreate(RoomFields):
    name: str
    capacity: int = 1


class RoomService:
    def __init__(self, store: BookingStore, cache=None, auditor=None):
        self.store = store
        self.cache = cache
        self.auditor = auditor

    # ── Discovery ─────────────────────────────────────────────────────────────

    def list_rooms(self, capacity: Optional[int] = None,
                   building: Optional[str] = None,
                   equipment: Optional[str] = None) -> list[Room]:
        """
        Active rooms seating at least `capacity`, whose building contains
        `building` (case-insensitive) and whose equipment includes the
        `equipment` tag. Ordered by building, then name.
        """
        if capacity is not None and capacity < 1:
            raise ValidationError("capacity: Capacity must be at least 1")
        rooms = self.store.list_rooms(min_capacity=capacity,
                                      building=sanitize_string(building) if building else None)
        if equipment:
            tag = sanitize_string(equipment)
            rooms = [r for r in rooms if tag in (r.equipment or [])]
        return rooms

    def get_room(self, room_id: str) -> Room:
        return rules.require_room(self.store.get_room(room_id))

    def list_buildings(self) -> list[dict]:
        return [{"name": name, "room_count": count}
                for name, count in self.store.building_room_counts()]

    # ── Admin ─────────────────────────────────────────────────────────────────

    def create_room(self, actor_id: str, **fields) -> Room:
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        data = parse(RoomCreate, **fields)
        room = Room(
            id=new_id(),
            name=data.name,
            building=data.building,
            capacity=data.capacity,
            equipment=data.equipment or [],
            restricted_roles=[r.value for r in data.restricted_roles or []],
            is_active=True if data.is_active is None else data.is_active,
            is_locked=bool(data.is_locked),
        )
        self.store.add(room)
        self._commit()
        logger.info("room %s (%s) created", room.id, data.name)
        self._audit(admin.id, "ROOM_CREATED", room.id, None)
        return room

    def update_room(self, actor_id: str, room_id: str,
                    reason: Optional[str] = None, **fields) -> Room:
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        data = parse(RoomFields, **fields)
        room = rules.require_room(self.store.get_room(room_id))

        changes = data.model_dump(exclude_unset=True)
        nulled = sorted(k for k in NOT_NULL if k in changes and changes[k] is None)
        if nulled:
            raise ValidationError(f"{nulled[0]}: Must not be null")

        for key, value in changes.items():
            if value is None:
                value = [] if key == "equipment" else None
            elif key == "restricted_roles":
                value = [Role(r).value for r in value]
            setattr(room, key, value)
        self._commit()

        logger.info("room %s updated: %s", room_id, sorted(data.model_fields_set))
        invalidate_room(self.cache, room_id)
        self._audit(admin.id, "ROOM_UPDATED", room_id, reason)
        return room

    def deactivate_room(self, actor_id: str, room_id: str,
                        reason: Optional[str] = None) -> Room:
        admin = rules.require_admin(rules.require_user(self.store.get_user(actor_id)))
        room = rules.require_room(self.store.get_room(room_id))
        room.is_active = False
        self._commit()

        logger.info("room %s deactivated", room_id)
        invalidate_room(self.cache, room_id)
        self._audit(admin.id, "ROOM_DEACTIVATED", room_id, reason)
        return room

    def _commit(self):
        try:
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

    def _audit(self, actor, action_type, room_id, reason):
        if self.auditor is not None:
            self.auditor.record(actor, action_type, "Room", room_id, reason)
