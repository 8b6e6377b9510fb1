"""
Audit trail writer and admin listing. Each write runs in its own session
after the primary write has committed; a failed audit insert is logged,
never raised.
"""
import logging
from typing import Optional

from roombook.booking import rules
from roombook.models import AuditLog

logger = logging.getLogger(__name__)


class AuditRecorder:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def record(self, actor: str, action_type: str, target_type: str,
               target_id: Optional[str] = None, reason: Optional[str] = None):
        try:
            db = self.session_factory()
            try:
                db.add(AuditLog(
                    actor_user_id=actor, action_type=action_type,
                    target_type=target_type, target_id=target_id, reason=reason,
                ))
                db.commit()
            finally:
                db.close()
        except Exception:
            logger.exception("audit %s on %s %s not recorded", action_type, target_type, target_id)
            return
        logger.info("audit %s by %s on %s %s", action_type, actor, target_type, target_id)


def list_audit(store, actor_id: str, action_type: Optional[str] = None,
               target_type: Optional[str] = None,
               actor_user_id: Optional[str] = None,
               limit: int = 100) -> list[AuditLog]:
    """Newest first. Admin only."""
    rules.require_admin(rules.require_user(store.get_user(actor_id)))
    limit = max(1, min(limit, 100))
    return store.list_audit(action_type=action_type, target_type=target_type,
                            actor_user_id=actor_user_id, limit=limit)
