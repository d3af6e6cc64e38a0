"""
Notification collaborator.

Delivery channels (email, webhook, admin console) live outside this
package. ``LoggingNotifier`` writes each notification to the log and keeps
an outbox so callers and tests can see what would have been sent.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .audit import utcnow

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_email(self, target: str, subject: str, body: str) -> None: ...

    def send_webhook(self, target: str, payload: dict[str, Any]) -> None: ...

    def notify_admin(self, target: str, message: str) -> None: ...


@dataclass(frozen=True)
class Notification:
    channel: str  # email, webhook, admin
    target: str
    payload: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=utcnow)


class LoggingNotifier:
    def __init__(self):
        self.outbox: list[Notification] = []
        self._lock = threading.Lock()

    def _record(self, notification: Notification) -> None:
        with self._lock:
            self.outbox.append(notification)

    def send_email(self, target: str, subject: str, body: str) -> None:
        logger.info("Email notification to %s: %s", target, subject)
        self._record(Notification("email", target, {"subject": subject, "body": body}))

    def send_webhook(self, target: str, payload: dict[str, Any]) -> None:
        logger.info("Webhook notification to %s", target)
        self._record(Notification("webhook", target, dict(payload)))

    def notify_admin(self, target: str, message: str) -> None:
        logger.info("Admin notification to %s: %s", target, message)
        self._record(Notification("admin", target, {"message": message}))
