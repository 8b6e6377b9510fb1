"""
FastAPI app. HTTP surface over the booking core.
  GET    /rooms                 GET /rooms/{room_id}          GET /buildings
  GET    /rooms/{room_id}/availability
  GET    /rooms/{room_id}/conflicts
  POST   /requests              GET /requests
  PATCH  /requests/{id}         POST /requests/{id}/cancel
  GET    /bookings              POST /bookings/override
  PATCH  /bookings/{id}
  POST   /admin/rooms           PATCH/DELETE /admin/rooms/{id}
  GET    /notifications         POST /notifications/{id}/read
  POST   /notifications/read-all
  GET    /admin/audit
  GET    /admin/reports/utilization   GET /admin/reports/peak-hours

The caller is identified by the X-User-Id header; sessions and login live
outside this service.
"""
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from roombook.audit.recorder import AuditRecorder, list_audit
from roombook.booking import rules
from roombook.booking.lifecycle import BookingService
from roombook.cache.store import build_cache
from roombook.config import Settings, configure_logging, get_settings
from roombook.errors import BookingError, Unauthorized
from roombook.models import RequestStatus
from roombook.notify.dispatcher import Notifier
from roombook.notify.inbox import NotificationInbox
from roombook.reports.usage import ReportService
from roombook.rooms.service import RoomService
from roombook.scheduling.availability import get_room_availability
from roombook.scheduling.conflicts import find_conflicts
from roombook.scheduling.intervals import validate_interval
from roombook.store import BookingStore

logger = logging.getLogger(__name__)


# ── Bodies ────────────────────────────────────────────────────────────────────

class RequestBody(BaseModel):
    room_id: str
    start_at: datetime
    end_at: datetime
    purpose: str

class DecisionBody(BaseModel):
    status: str
    reason: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

class OverrideBody(RequestBody):
    user_id: str
    reason: str

class RescheduleBody(BaseModel):
    start_at: datetime
    end_at: datetime
    reason: str

class RoomBody(BaseModel):
    name: Optional[str] = None
    building: Optional[str] = None
    capacity: Optional[int] = None
    equipment: Optional[list[str]] = None
    restricted_roles: Optional[list[str]] = None
    is_active: Optional[bool] = None
    is_locked: Optional[bool] = None
    reason: Optional[str] = None


# ── App factory ───────────────────────────────────────────────────────────────

def create_app(session_factory=None, cache=None, settings: Optional[Settings] = None,
               notifier: Optional[Notifier] = None) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        from roombook.database import SessionLocal, init_db
        session_factory = SessionLocal
        startup_hooks = [init_db]
    else:
        startup_hooks = []

    app = FastAPI(title="Room Booking API", version="1.0.0")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.cache = cache if cache is not None else build_cache(settings.redis_url)
    app.state.auditor = AuditRecorder(session_factory)
    app.state.notifier = notifier or Notifier(session_factory, settings)

    @app.on_event("startup")
    def startup():
        configure_logging(settings.log_level)
        for hook in startup_hooks:
            hook()
        logger.info("room booking API started")

    @app.on_event("shutdown")
    def shutdown():
        app.state.notifier.shutdown()

    @app.exception_handler(BookingError)
    def booking_error(request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status_code,
                            content={"success": False, "error": exc.to_dict()})

    _register_routes(app)
    return app


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> BookingStore:
    return BookingStore(db)


def get_booking_service(request: Request, store: BookingStore = Depends(get_store)) -> BookingService:
    s = request.app.state
    return BookingService(store, cache=s.cache, notifier=s.notifier,
                          auditor=s.auditor, settings=s.settings)


def get_room_service(request: Request, store: BookingStore = Depends(get_store)) -> RoomService:
    return RoomService(store, cache=request.app.state.cache, auditor=request.app.state.auditor)


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise Unauthorized("Authentication required")
    return x_user_id


def ok(data) -> dict:
    return {"success": True, "data": data}


def _register_routes(app: FastAPI):

    # ── Rooms ─────────────────────────────────────────────────────────────────

    @app.get("/rooms")
    def list_rooms(capacity: Optional[int] = None, building: Optional[str] = None,
                   equipment: Optional[str] = None,
                   svc: RoomService = Depends(get_room_service)):
        """Active rooms; capacity is a minimum, building a substring, equipment a tag."""
        rooms = svc.list_rooms(capacity=capacity, building=building, equipment=equipment)
        return ok([_to_dict(r) for r in rooms])

    @app.get("/rooms/{room_id}")
    def get_room(room_id: str, svc: RoomService = Depends(get_room_service)):
        return ok(_to_dict(svc.get_room(room_id)))

    @app.get("/buildings")
    def list_buildings(svc: RoomService = Depends(get_room_service)):
        return ok(svc.list_buildings())

    # ── Availability ──────────────────────────────────────────────────────────

    @app.get("/rooms/{room_id}/availability")
    def room_availability(room_id: str, request: Request, day: date = Query(alias="date"),
                          store: BookingStore = Depends(get_store)):
        """48 half-hour slots for the UTC day, plus that day's bookings."""
        s = request.app.state
        return ok(get_room_availability(store, s.cache, room_id, day,
                                        ttl=s.settings.availability_ttl_seconds))

    @app.get("/rooms/{room_id}/conflicts")
    def room_conflicts(room_id: str, start_at: datetime, end_at: datetime,
                       exclude_id: Optional[str] = None,
                       store: BookingStore = Depends(get_store)):
        rules.require_room(store.get_room(room_id))
        start_at, end_at = validate_interval(start_at, end_at)
        conflicts = find_conflicts(store, room_id, start_at, end_at, exclude_id)
        return ok({"has_conflict": bool(conflicts),
                   "conflicting_ids": [b.id for b in conflicts]})

    # ── Requests ──────────────────────────────────────────────────────────────

    @app.post("/requests", status_code=201)
    def create_request(body: RequestBody, user_id: str = Depends(current_user_id),
                       svc: BookingService = Depends(get_booking_service)):
        outcome = svc.create_booking_request(
            user_id, body.room_id, body.start_at, body.end_at, body.purpose
        )
        return ok({"request": _to_dict(outcome.request), "booking": _to_dict(outcome.booking)})

    @app.get("/requests")
    def list_requests(mine: bool = False, status: Optional[RequestStatus] = None,
                      user_id: str = Depends(current_user_id),
                      svc: BookingService = Depends(get_booking_service)):
        """Own requests with mine=true; everybody's requires admin."""
        if not mine:
            rules.require_admin(rules.require_user(svc.store.get_user(user_id)))
        requests = svc.list_requests(user_id=user_id if mine else None, status=status)
        return ok([_to_dict(r) for r in requests])

    @app.patch("/requests/{request_id}")
    def decide_request(request_id: str, body: DecisionBody,
                       user_id: str = Depends(current_user_id),
                       svc: BookingService = Depends(get_booking_service)):
        outcome = svc.decide_request(user_id, request_id, body.status, body.reason,
                                     body.start_at, body.end_at)
        return ok({"request": _to_dict(outcome.request), "booking": _to_dict(outcome.booking)})

    @app.post("/requests/{request_id}/cancel")
    def cancel_request(request_id: str, user_id: str = Depends(current_user_id),
                       svc: BookingService = Depends(get_booking_service)):
        return ok(_to_dict(svc.cancel_request(user_id, request_id)))

    # ── Bookings ──────────────────────────────────────────────────────────────

    @app.get("/bookings")
    def list_bookings(room_id: Optional[str] = None,
                      start: Optional[datetime] = None, end: Optional[datetime] = None,
                      svc: BookingService = Depends(get_booking_service)):
        return ok([_to_dict(b) for b in svc.list_bookings(room_id, start, end)])

    @app.post("/bookings/override", status_code=201)
    def create_override(body: OverrideBody, user_id: str = Depends(current_user_id),
                        svc: BookingService = Depends(get_booking_service)):
        """Admin booking that skips the conflict check. Reason is mandatory."""
        booking = svc.create_override_booking(
            user_id, body.room_id, body.user_id, body.start_at, body.end_at,
            body.purpose, body.reason,
        )
        return ok(_to_dict(booking))

    @app.patch("/bookings/{booking_id}")
    def reschedule(booking_id: str, body: RescheduleBody,
                   user_id: str = Depends(current_user_id),
                   svc: BookingService = Depends(get_booking_service)):
        booking = svc.reschedule_booking(user_id, booking_id, body.start_at,
                                         body.end_at, body.reason)
        return ok(_to_dict(booking))

    # ── Room admin ────────────────────────────────────────────────────────────

    @app.post("/admin/rooms", status_code=201)
    def create_room(body: RoomBody, user_id: str = Depends(current_user_id),
                    svc: RoomService = Depends(get_room_service)):
        fields = body.model_dump(exclude_unset=True, exclude={"reason"})
        return ok(_to_dict(svc.create_room(user_id, **fields)))

    @app.patch("/admin/rooms/{room_id}")
    def update_room(room_id: str, body: RoomBody, user_id: str = Depends(current_user_id),
                    svc: RoomService = Depends(get_room_service)):
        fields = body.model_dump(exclude_unset=True, exclude={"reason"})
        return ok(_to_dict(svc.update_room(user_id, room_id, reason=body.reason, **fields)))

    @app.delete("/admin/rooms/{room_id}")
    def deactivate_room(room_id: str, reason: Optional[str] = None,
                        user_id: str = Depends(current_user_id),
                        svc: RoomService = Depends(get_room_service)):
        return ok(_to_dict(svc.deactivate_room(user_id, room_id, reason)))

    # ── Notifications ─────────────────────────────────────────────────────────

    @app.get("/notifications")
    def list_notifications(unread: bool = False, limit: int = Query(default=50, ge=1, le=100),
                           user_id: str = Depends(current_user_id),
                           store: BookingStore = Depends(get_store)):
        inbox = NotificationInbox(store).list_notifications(user_id, unread=unread, limit=limit)
        return ok({"notifications": [_to_dict(n) for n in inbox["notifications"]],
                   "unread_count": inbox["unread_count"]})

    @app.post("/notifications/read-all")
    def mark_all_notifications_read(user_id: str = Depends(current_user_id),
                                    store: BookingStore = Depends(get_store)):
        return ok({"updated": NotificationInbox(store).mark_all_read(user_id)})

    @app.post("/notifications/{notification_id}/read")
    def mark_notification_read(notification_id: str, user_id: str = Depends(current_user_id),
                               store: BookingStore = Depends(get_store)):
        return ok(_to_dict(NotificationInbox(store).mark_read(user_id, notification_id)))

    # ── Audit + reports ───────────────────────────────────────────────────────

    @app.get("/admin/audit")
    def audit_log(action_type: Optional[str] = None, target_type: Optional[str] = None,
                  actor_user_id: Optional[str] = None,
                  limit: int = Query(default=100, ge=1, le=100),
                  user_id: str = Depends(current_user_id),
                  store: BookingStore = Depends(get_store)):
        logs = list_audit(store, user_id, action_type=action_type, target_type=target_type,
                          actor_user_id=actor_user_id, limit=limit)
        return ok([_to_dict(entry) for entry in logs])

    @app.get("/admin/reports/utilization")
    def utilization_report(start: Optional[datetime] = None, weeks: int = 4,
                           user_id: str = Depends(current_user_id),
                           store: BookingStore = Depends(get_store)):
        return ok(ReportService(store).utilization(user_id, start=start, weeks=weeks))

    @app.get("/admin/reports/peak-hours")
    def peak_hours_report(start: Optional[datetime] = None, weeks: int = 4,
                          user_id: str = Depends(current_user_id),
                          store: BookingStore = Depends(get_store)):
        return ok(ReportService(store).peak_hours(user_id, start=start, weeks=weeks))

    # ── Health check ──────────────────────────────────────────────────────────

    @app.get("/")
    def root():
        return {
            "service": "Room Booking API",
            "version": "1.0.0",
            "endpoints": ["/rooms", "/rooms/{id}/availability", "/buildings", "/requests",
                          "/bookings", "/bookings/override", "/notifications",
                          "/admin/rooms", "/admin/audit", "/admin/reports"],
        }


# ── Helpers ───────────────────────────────────────────────────────────────────

def _to_dict(obj) -> Optional[dict]:
    """Convert SQLAlchemy model to dict."""
    if obj is None:
        return None
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


app = create_app()
