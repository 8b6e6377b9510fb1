from pydantic import BaseModel, field_validator, model_validator
from pydantic import ValidationError as SchemaError
from typing import Optional
from datetime import datetime
import re

from roombook.errors import ValidationError
from roombook.models import RequestStatus
from roombook.scheduling.intervals import to_utc

MIN_JUSTIFICATION = 10
MAX_PURPOSE = 500
MAX_REASON = 1000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_string(value) -> str:
    """Trim and drop control characters (newlines and tabs survive)."""
    if not isinstance(value, str):
        value = str(value)
    return _CONTROL_CHARS.sub("", value.replace("\0", "")).strip()


class _Interval(BaseModel):
    start_at: datetime
    end_at: datetime

    @field_validator("start_at", "end_at")
    @classmethod
    def as_utc(cls, v):
        return to_utc(v)

    @model_validator(mode="after")
    def end_after_start(self):
        assert self.end_at > self.start_at, "End time must be after start time"
        return self


class BookingRequestCreate(_Interval):
    room_id: str
    purpose: str

    @field_validator("purpose")
    @classmethod
    def clean_purpose(cls, v):
        v = sanitize_string(v)
        assert v, "Purpose is required"
        assert len(v) <= MAX_PURPOSE, f"Purpose must be at most {MAX_PURPOSE} characters"
        return v


class OverrideBookingCreate(BookingRequestCreate):
    user_id: str
    reason: str

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v):
        return _justification(v)


class Decision(BaseModel):
    status: RequestStatus
    reason: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    @field_validator("status")
    @classmethod
    def decidable(cls, v):
        assert v in (RequestStatus.APPROVED, RequestStatus.REJECTED), \
            "Decision must be APPROVED or REJECTED"
        return v

    @field_validator("start_at", "end_at")
    @classmethod
    def as_utc(cls, v):
        return to_utc(v) if v is not None else v

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v):
        if v is None:
            return v
        v = sanitize_string(v)
        assert len(v) <= MAX_REASON, f"Reason must be at most {MAX_REASON} characters"
        return v or None

    @model_validator(mode="after")
    def rejection_needs_reason(self):
        if self.status == RequestStatus.REJECTED:
            _justification(self.reason or "")
        return self


class Reschedule(_Interval):
    reason: str

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v):
        return _justification(v)


def _justification(v: str) -> str:
    v = sanitize_string(v)
    assert len(v) >= MIN_JUSTIFICATION, \
        f"Justification must be at least {MIN_JUSTIFICATION} characters"
    assert len(v) <= MAX_REASON, f"Reason must be at most {MAX_REASON} characters"
    return v


def parse(schema, **data):
    """Build a schema, turning pydantic errors into our ValidationError."""
    try:
        return schema(**data)
    except SchemaError as e:
        first = e.errors()[0]
        msg = str(first.get("msg", "Invalid input")).removeprefix("Assertion failed, ")
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{field}: {msg}" if field else msg) from e
