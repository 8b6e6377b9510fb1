"""
Admission rules for bookings.
Who may book what lives here, out of lifecycle.py.
"""
from roombook.errors import Forbidden, InvalidState, NotFound
from roombook.models import RequestStatus, Role, Room, User


def require_user(user: User, what: str = "User") -> User:
    if user is None:
        raise NotFound(f"{what} not found")
    return user


def require_room(room: Room) -> Room:
    if room is None:
        raise NotFound("Room not found")
    return room


def require_admin(user: User) -> User:
    if user.role != Role.ADMIN:
        raise Forbidden("Admin access required")
    return user


def room_is_bookable(room: Room):
    """Inactive (soft-deleted) and locked rooms accept no new requests."""
    if not room.is_active:
        raise InvalidState("Room is not active")
    if room.is_locked:
        raise InvalidState("Room is currently locked")


def role_allowed(room: Room, role: Role) -> bool:
    """Empty or missing restriction list means anyone may book."""
    restricted = room.restricted_roles or []
    if not restricted:
        return True
    return Role(role).value in {Role(r).value for r in restricted}


def check_role_restriction(room: Room, user: User):
    if not role_allowed(room, user.role):
        raise Forbidden("You do not have permission to book this room")


def require_pending(status: RequestStatus, action: str):
    if status != RequestStatus.PENDING:
        raise InvalidState(f"Only pending requests can be {action}")
