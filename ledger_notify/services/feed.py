# ledger_notify/services/feed.py
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ledger_notify import config
from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.notification import Notification, NotificationIn
from ledger_notify.services.change_feed import ChangeFeed
from ledger_notify.services.retention import RetentionEngine

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[Notification]], Awaitable[None]]
AlertCallback = Callable[[Notification], Awaitable[None]]


class FeedState(str, Enum):
    UNATTACHED = "unattached"
    LOADING = "loading"
    ATTACHED = "attached"
    CLOSED = "closed"


class FeedSession:
    """
    One user's notification list for the lifetime of a client session.

    The list is a read-mostly cache of the store, newest first and capped.
    Realtime inserts arrive through the change feed into a per-session queue
    and are applied by a single reducer task; local mutations are mirrored
    right after the store call resolves.
    """

    def __init__(
        self,
        store,
        change_feed: ChangeFeed,
        retention: RetentionEngine,
        feed_size: int = config.FEED_SIZE,
        maintenance_limit: int = config.SESSION_USER_LIMIT,
        maintenance_interval: float = config.MAINTENANCE_INTERVAL_SECONDS,
        alerts_enabled: bool = False,
        on_alert: Optional[AlertCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ):
        self.store = store
        self.change_feed = change_feed
        self.retention = retention
        self.feed_size = feed_size
        self.maintenance_limit = maintenance_limit
        self.maintenance_interval = maintenance_interval
        self.alerts_enabled = alerts_enabled
        self.on_alert = on_alert
        self.on_change = on_change

        self.state = FeedState.UNATTACHED
        self.user_id: Optional[str] = None
        self.notifications: List[Notification] = []

        self._inbox: Optional[asyncio.Queue] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._reducer: Optional[asyncio.Task] = None
        self._maintenance: Optional[asyncio.Task] = None

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    # -- lifecycle ---------------------------------------------------------

    async def attach(self, user_id: str):
        if self.state is FeedState.CLOSED:
            raise RuntimeError("feed session is closed")
        if self.user_id is not None:
            await self.detach()

        self.user_id = user_id
        self.state = FeedState.LOADING

        # subscribe before loading so nothing inserted meanwhile is missed;
        # events queue up until the reducer starts and are de-duplicated then
        inbox: asyncio.Queue = asyncio.Queue()
        self._inbox = inbox
        self._unsubscribe = self.change_feed.subscribe(user_id, inbox.put_nowait)

        await self.load()

        self.state = FeedState.ATTACHED
        self._reducer = asyncio.create_task(self._reduce(inbox, user_id))
        self._maintenance = asyncio.create_task(self._maintain(user_id))
        logger.info("feed attached for user=%s (%d notifications)", user_id, len(self.notifications))

    async def detach(self):
        """Release the realtime subscription and timers. Delayed deletes already scheduled still fire."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = [t for t in (self._reducer, self._maintenance) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reducer = None
        self._maintenance = None
        self._inbox = None

        if self.user_id is not None:
            logger.info("feed detached for user=%s", self.user_id)
        self.user_id = None
        self.notifications = []
        if self.state is not FeedState.CLOSED:
            self.state = FeedState.UNATTACHED

    async def close(self):
        await self.detach()
        self.state = FeedState.CLOSED

    def _is_live(self, user_id: str) -> bool:
        return self.state in (FeedState.LOADING, FeedState.ATTACHED) and self.user_id == user_id

    # -- realtime ----------------------------------------------------------

    async def _reduce(self, inbox: asyncio.Queue, user_id: str):
        while True:
            notification: Notification = await inbox.get()
            if inbox is not self._inbox or not self._is_live(user_id) or notification.user_id != user_id:
                continue
            if not self._merge(notification):
                continue
            if self.alerts_enabled and self.on_alert is not None:
                try:
                    await self.on_alert(notification)
                except Exception:
                    logger.exception("alert callback failed for notification %s", notification.id)
            await self._changed()

    def _merge(self, notification: Notification) -> bool:
        """Put a row at the head of the list unless its id is already present."""
        if any(n.id == notification.id for n in self.notifications):
            return False
        self.notifications = [notification] + self.notifications[: self.feed_size - 1]
        return True

    async def _changed(self):
        if self.on_change is None:
            return
        try:
            await self.on_change(list(self.notifications))
        except Exception:
            logger.exception("change callback failed for user=%s", self.user_id)

    # -- maintenance -------------------------------------------------------

    async def _maintain(self, user_id: str):
        while True:
            await self.retention.limit_user(user_id, self.maintenance_limit)
            await asyncio.sleep(self.maintenance_interval)

    # -- operations --------------------------------------------------------

    async def load(self) -> bool:
        user_id = self.user_id
        if user_id is None:
            return False
        try:
            rows = await self.store.list_notifications(user_id, limit=self.feed_size)
        except StoreError:
            logger.exception("error loading notifications for user=%s", user_id)
            return False
        if not self._is_live(user_id):
            return False
        self.notifications = rows
        await self._changed()
        return True

    async def add(self, item: NotificationIn) -> Optional[Notification]:
        """Create a notification addressed to the session's own user."""
        user_id = self.user_id
        if user_id is None:
            return None
        try:
            created = await self.store.insert_notification(user_id, item)
        except StoreError:
            logger.exception("error adding notification for user=%s", user_id)
            return None
        if self._is_live(user_id) and self._merge(created):
            await self._changed()
        return created

    async def mark_read(self, notification_id: str) -> bool:
        user_id = self.user_id
        if user_id is None:
            return False
        try:
            found = await self.store.mark_read(user_id, notification_id)
        except StoreError:
            logger.exception("error marking notification %s as read", notification_id)
            return False
        if not found:
            return False

        self.retention.schedule_read_delete(user_id, notification_id)

        if self._is_live(user_id):
            self.notifications = [
                n.model_copy(update={"read": True}) if n.id == notification_id else n
                for n in self.notifications
            ]
            await self._changed()
        return True

    async def mark_all_read(self) -> bool:
        user_id = self.user_id
        if user_id is None:
            return False
        try:
            await self.store.mark_all_read(user_id)
        except StoreError:
            logger.exception("error marking all notifications as read for user=%s", user_id)
            return False
        if self._is_live(user_id):
            self.notifications = [n.model_copy(update={"read": True}) for n in self.notifications]
            await self._changed()
        return True

    async def clear(self, notification_id: str) -> bool:
        user_id = self.user_id
        if user_id is None:
            return False
        try:
            await self.store.delete_notification(user_id, notification_id)
        except StoreError:
            logger.exception("error clearing notification %s", notification_id)
            return False
        if self._is_live(user_id):
            self.notifications = [n for n in self.notifications if n.id != notification_id]
            await self._changed()
        return True

    async def clear_all(self) -> bool:
        user_id = self.user_id
        if user_id is None:
            return False
        try:
            await self.store.delete_all(user_id)
        except StoreError:
            logger.exception("error clearing all notifications for user=%s", user_id)
            return False
        if self._is_live(user_id):
            self.notifications = []
            await self._changed()
        return True
