"""
User-facing notifications, decoupled from any particular UI.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from cellbook.events import Disposable, Emitter

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """A message surfaced to the user."""
    level: str  # error | warning | info
    message: str
    detail: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


class NotificationManager:
    """
    Collects notifications and fans them out to subscribers.

    Every notification is also written to the log so that headless use
    still records load/save/kernel failures.
    """

    def __init__(self):
        self.emitter = Emitter()
        self.notifications: list[Notification] = []

    def _add(self, level: str, message: str, detail: Optional[str]) -> Notification:
        notification = Notification(level=level, message=message, detail=detail)
        self.notifications.append(notification)
        log_level = {"error": logging.ERROR, "warning": logging.WARNING}.get(level, logging.INFO)
        if detail:
            logger.log(log_level, "%s: %s", message, detail)
        else:
            logger.log(log_level, "%s", message)
        self.emitter.emit("did-add-notification", notification)
        return notification

    def add_error(self, message: str, detail: Optional[str] = None) -> Notification:
        return self._add("error", message, detail)

    def add_warning(self, message: str, detail: Optional[str] = None) -> Notification:
        return self._add("warning", message, detail)

    def add_info(self, message: str, detail: Optional[str] = None) -> Notification:
        return self._add("info", message, detail)

    def on_did_add_notification(self, callback: Callable[[Notification], None]) -> Disposable:
        return self.emitter.on("did-add-notification", callback)

    def clear(self):
        self.notifications.clear()
