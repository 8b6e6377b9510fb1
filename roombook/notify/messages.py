"""
Notification builders for each booking event. Keeps wording out of the
lifecycle code.
"""
from datetime import datetime

from roombook.models import NotificationType


def _span(start: datetime, end: datetime) -> str:
    return f"{start:%Y-%m-%d %H:%M} - {end:%H:%M} UTC"


def request_submitted(notifier, user_id, request_id, room_name, start, end):
    notifier.notify(
        user_id, NotificationType.REQUEST_SUBMITTED,
        f"Booking Request Submitted: {room_name}",
        f"Your booking request for {room_name} has been submitted and is "
        f"pending approval. Time: {_span(start, end)}",
        {"request_id": request_id, "room_name": room_name,
         "start_at": start.isoformat(), "end_at": end.isoformat()},
    )


def booking_approved(notifier, user_id, request_id, room_name, start, end):
    notifier.notify(
        user_id, NotificationType.REQUEST_APPROVED,
        f"Booking Approved: {room_name}",
        f"Your booking request for {room_name} has been approved. Time: {_span(start, end)}",
        {"request_id": request_id, "room_name": room_name,
         "start_at": start.isoformat(), "end_at": end.isoformat()},
    )


def booking_rejected(notifier, user_id, request_id, room_name, reason):
    notifier.notify(
        user_id, NotificationType.REQUEST_REJECTED,
        f"Booking Request Rejected: {room_name}",
        f"Your booking request for {room_name} has been rejected. Reason: {reason}",
        {"request_id": request_id, "room_name": room_name, "reason": reason},
    )


def booking_modified(notifier, user_id, target_id, room_name, reason,
                     old_start, old_end, new_start, new_end):
    notifier.notify(
        user_id, NotificationType.REQUEST_MODIFIED,
        f"Booking Modified: {room_name}",
        f"Your booking for {room_name} has been modified. "
        f"Original time: {_span(old_start, old_end)}. "
        f"New time: {_span(new_start, new_end)}. Reason: {reason}",
        {"target_id": target_id, "room_name": room_name, "reason": reason,
         "old_start_at": old_start.isoformat(), "old_end_at": old_end.isoformat(),
         "new_start_at": new_start.isoformat(), "new_end_at": new_end.isoformat()},
    )


def request_cancelled(notifier, user_id, request_id, room_name):
    notifier.notify(
        user_id, NotificationType.REQUEST_CANCELLED,
        f"Booking Request Cancelled: {room_name}",
        f"Your booking request for {room_name} has been cancelled.",
        {"request_id": request_id, "room_name": room_name},
    )


def override_created(notifier, user_id, booking_id, room_name, start, end, reason):
    notifier.notify(
        user_id, NotificationType.OVERRIDE_CREATED,
        f"Override Booking Created: {room_name}",
        f"An override booking has been created for {room_name} on your behalf. "
        f"Time: {_span(start, end)}. Reason: {reason}",
        {"booking_id": booking_id, "room_name": room_name, "reason": reason,
         "start_at": start.isoformat(), "end_at": end.isoformat()},
    )
