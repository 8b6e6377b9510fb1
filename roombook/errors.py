"""
Error kinds raised by the booking core.

Every error carries a stable `code` and the HTTP status the API layer maps
it to. Side-effect failures (notifications, audit, cache) are never raised
as these; they are logged where they happen.
"""
from typing import Optional


class BookingError(Exception):
    code = "BOOKING_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(BookingError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidState(BookingError):
    code = "INVALID_STATE"
    status_code = 400


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    status_code = 422


class Conflict(BookingError):
    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, conflicting_ids: Optional[list[str]] = None,
                 suggest_override: bool = False):
        if suggest_override:
            message = f"{message} Use override booking instead."
        super().__init__(message)
        self.conflicting_ids = conflicting_ids or []
        self.suggest_override = suggest_override

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflicting_ids"] = self.conflicting_ids
        return data


class StoreUnavailable(BookingError):
    code = "STORE_UNAVAILABLE"
    status_code = 503


class Unauthorized(BookingError):
    code = "UNAUTHORIZED"
    status_code = 401
