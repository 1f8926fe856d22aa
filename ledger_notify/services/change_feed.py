# ledger_notify/services/change_feed.py
import logging
from typing import Callable, Dict, Set

from ledger_notify.models.notification import Notification

logger = logging.getLogger(__name__)

Listener = Callable[[Notification], None]


class ChangeFeed:
    """
    Insert listeners per user.
    user_id -> set(listener)

    Listeners must not block: they are called inline by whoever inserted
    the row (the store). FeedSession listeners only enqueue.
    """
    def __init__(self):
        self.listeners: Dict[str, Set[Listener]] = {}

    def subscribe(self, user_id: str, listener: Listener) -> Callable[[], None]:
        self.listeners.setdefault(user_id, set()).add(listener)

        def unsubscribe():
            self._remove(user_id, listener)

        return unsubscribe

    def _remove(self, user_id: str, listener: Listener):
        if user_id in self.listeners:
            self.listeners[user_id].discard(listener)
            if not self.listeners[user_id]:
                del self.listeners[user_id]

    def publish(self, notification: Notification):
        """Deliver an inserted row to every listener of its owner (tabs, devices...)."""
        for listener in list(self.listeners.get(notification.user_id, ())):
            try:
                listener(notification)
            except Exception:
                logger.exception("change feed listener failed for user=%s", notification.user_id)

    def listener_count(self, user_id: str) -> int:
        return len(self.listeners.get(user_id, ()))
