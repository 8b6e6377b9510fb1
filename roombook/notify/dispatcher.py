"""
Fire-and-forget notification dispatch.

notify() hands the work to a small thread pool and returns immediately.
Each delivery stores a Notification row in its own session and emails the
user over SMTP when credentials are configured (logged otherwise).
Failures are logged and never reach the caller.
"""
import logging
import smtplib
import ssl
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from email.message import EmailMessage
from typing import Optional

from roombook.config import Settings
from roombook.models import Notification, NotificationType, User

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, session_factory, settings: Settings,
                 synchronous: bool = False):
        self.session_factory = session_factory
        self.settings = settings
        self.synchronous = synchronous
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def notify(self, user_id: str, type: NotificationType, title: str,
               message: str, metadata: Optional[dict] = None):
        if self.synchronous:
            self._deliver(user_id, type, title, message, metadata)
            return
        try:
            future = self._pool().submit(self._deliver, user_id, type, title, message, metadata)
        except RuntimeError as e:
            # pool already shut down
            logger.error("notification %s for %s dropped: %s", type.value, user_id, e)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def flush(self, timeout: Optional[float] = None):
        """Block until every notification submitted so far has been handled."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self):
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ── Internals ─────────────────────────────────────────────────────────────

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.notify_workers,
                    thread_name_prefix="notify",
                )
            return self._executor

    def _forget(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, user_id, type, title, message, metadata):
        try:
            db = self.session_factory()
            try:
                db.add(Notification(
                    user_id=user_id, type=type, title=title,
                    message=message, meta=metadata,
                ))
                db.commit()
                user = db.get(User, user_id)
                email = user.email if user else None
            finally:
                db.close()
            if email:
                self.send_email(email, title, message)
        except Exception:
            logger.exception("failed to deliver %s notification to %s", type.value, user_id)

    def send_email(self, to: str, subject: str, body: str):
        s = self.settings
        if not s.smtp_enabled:
            logger.info("email (not sent, SMTP not configured) to=%s subject=%r", to, subject)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"Room Booking System <{s.mail_from}>"
        msg["To"] = to
        msg.set_content(body)

        context = ssl.create_default_context()
        if s.smtp_port == 465:
            with smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, context=context, timeout=10) as server:
                server.login(s.smtp_user, s.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as server:
                server.starttls(context=context)
                server.login(s.smtp_user, s.smtp_password)
                server.send_message(msg)
        logger.info("email sent to %s: %s", to, subject)
