# ledger_notify/services/retention.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from ledger_notify import config
from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.notification import NotificationStats

logger = logging.getLogger(__name__)


class RetentionEngine:
    """
    Bounds how many notifications are kept per user and for how long.

    Every destructive operation is a re-runnable sweep over a filter (age,
    read state, rank beyond a limit). Sweeps log store errors and return;
    the next scheduled run is the retry.
    """

    def __init__(
        self,
        store,
        old_days: int = config.OLD_NOTIFICATION_DAYS,
        read_days: int = config.READ_NOTIFICATION_DAYS,
        global_limit: int = config.GLOBAL_USER_LIMIT,
        read_delete_delay: float = config.READ_DELETE_DELAY_SECONDS,
        concurrency: int = config.CLEANUP_CONCURRENCY,
    ):
        self.store = store
        self.old_days = old_days
        self.read_days = read_days
        self.global_limit = global_limit
        self.read_delete_delay = read_delete_delay
        self.concurrency = max(1, concurrency)
        self.last_full_cleanup: Optional[datetime] = None
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def purge_old(self) -> int:
        """Delete everything older than the old-notification horizon, read or not."""
        cutoff = self._now() - timedelta(days=self.old_days)
        try:
            removed = await self.store.delete_older_than(cutoff)
        except StoreError:
            logger.exception("error cleaning up old notifications")
            return 0
        logger.info("old notifications cleaned up: removed=%d", removed)
        return removed

    async def purge_read(self) -> int:
        cutoff = self._now() - timedelta(days=self.read_days)
        try:
            removed = await self.store.delete_older_than(cutoff, read_only=True)
        except StoreError:
            logger.exception("error cleaning up read notifications")
            return 0
        logger.info("read notifications cleaned up: removed=%d", removed)
        return removed

    async def limit_user(self, user_id: str, limit: int = config.SESSION_USER_LIMIT) -> int:
        """Keep the `limit` most recent rows of a user, delete the rest in one batch."""
        try:
            rows = await self.store.list_ids(user_id)
            if len(rows) <= limit:
                return 0
            doomed = [row_id for row_id, _ in rows[limit:]]
            removed = await self.store.delete_ids(user_id, doomed)
        except StoreError:
            logger.exception("error limiting notifications for user=%s", user_id)
            return 0
        logger.info("kept latest %d notifications for user=%s, removed %d", limit, user_id, removed)
        return removed

    async def limit_all_users(self, limit: Optional[int] = None) -> int:
        limit = self.global_limit if limit is None else limit
        try:
            user_ids = await self.store.distinct_user_ids()
        except StoreError:
            logger.exception("error listing users for notification limits")
            return 0

        gate = asyncio.Semaphore(self.concurrency)

        async def worker(user_id: str) -> int:
            async with gate:
                return await self.limit_user(user_id, limit)

        removed = await asyncio.gather(*(worker(u) for u in user_ids))
        return sum(removed)

    async def full_cleanup(self) -> dict:
        logger.info("starting notification database cleanup")
        summary = {
            "old": await self.purge_old(),
            "read": await self.purge_read(),
            "overLimit": await self.limit_all_users(),
        }
        self.last_full_cleanup = self._now()
        logger.info("full notification cleanup completed: %s", summary)
        return summary

    def schedule_read_delete(self, user_id: str, notification_id: str) -> asyncio.Task:
        """
        Delete a read notification after the grace period, unless it became
        unread meanwhile. Fire-and-forget; the caller does not await it.
        """
        task = asyncio.get_running_loop().create_task(self._delete_later(user_id, notification_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _delete_later(self, user_id: str, notification_id: str) -> int:
        await asyncio.sleep(self.read_delete_delay)
        try:
            deleted = await self.store.delete_if_read(user_id, notification_id)
        except StoreError:
            logger.exception("error auto-deleting read notification %s", notification_id)
            return 0
        if deleted:
            logger.info("auto-deleted read notification %s", notification_id)
        return deleted

    @property
    def pending_deletes(self) -> int:
        return len(self._pending)

    async def stats(self) -> NotificationStats:
        try:
            total = await self.store.count()
            read = await self.store.count(read=True)
        except StoreError:
            logger.exception("error getting notification stats")
            return NotificationStats()
        return NotificationStats.from_counts(total, read)

    async def shutdown(self):
        """Process is stopping: pending delayed deletes are dropped."""
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
