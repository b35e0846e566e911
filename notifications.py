"""Publish/subscribe notification service.

One instance is created per request (or per test) and handed to every state
manager that needs to tell the user something. Subscribers receive each
notification as it is published; anything not yet delivered to the client
stays pending until ``drain`` is called.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)

VARIANTS = ("default", "info", "success", "warning", "destructive")


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    variant: str = "default"

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationService:
    def __init__(self):
        self._subscribers: List[Callable[[Notification], None]] = []
        self._pending: List[Notification] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, title: str, description: str = "", variant: str = "default") -> Notification:
        if variant not in VARIANTS:
            raise ValueError(f"Invalid variant: {variant}. Must be one of {list(VARIANTS)}")
        note = Notification(title=title, description=description, variant=variant)
        self._pending.append(note)
        for callback in list(self._subscribers):
            try:
                callback(note)
            except Exception:
                logger.exception("Notification subscriber failed")
        return note

    def info(self, title: str, description: str = "") -> Notification:
        return self.publish(title, description, "info")

    def success(self, title: str, description: str = "") -> Notification:
        return self.publish(title, description, "success")

    def warning(self, title: str, description: str = "") -> Notification:
        return self.publish(title, description, "warning")

    def error(self, title: str, description: str = "") -> Notification:
        return self.publish(title, description, "destructive")

    @property
    def pending(self) -> List[Notification]:
        return list(self._pending)

    def drain(self) -> List[Notification]:
        """Return pending notifications and forget them."""
        pending, self._pending = self._pending, []
        return pending
