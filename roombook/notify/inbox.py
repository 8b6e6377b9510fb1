"""
A user's notification inbox. Every operation is scoped to the owner.
"""
import logging

from roombook.booking import rules
from roombook.errors import Forbidden, NotFound
from roombook.models import Notification
from roombook.store import BookingStore

logger = logging.getLogger(__name__)


class NotificationInbox:
    def __init__(self, store: BookingStore):
        self.store = store

    def list_notifications(self, user_id: str, unread: bool = False, limit: int = 50) -> dict:
        """Newest first, plus the owner's total unread count."""
        rules.require_user(self.store.get_user(user_id))
        return {
            "notifications": self.store.list_notifications(user_id, unread_only=unread,
                                                           limit=limit),
            "unread_count": self.store.count_unread(user_id),
        }

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        note = self.store.get_notification(notification_id)
        if note is None:
            raise NotFound("Notification not found")
        if note.user_id != user_id:
            raise Forbidden("You can only update your own notifications")
        if not note.is_read:
            note.is_read = True
            self._commit()
        return note

    def mark_all_read(self, user_id: str) -> int:
        rules.require_user(self.store.get_user(user_id))
        count = self.store.mark_all_read(user_id)
        self._commit()
        logger.info("%d notifications marked read for %s", count, user_id)
        return count

    def _commit(self):
        try:
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
