"""
Shared fixtures.

The Table Storage stores are replaced by in-memory fakes with the same async
interface; they publish inserts to a real ChangeFeed like the real store does.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.notification import Notification, NotificationIn, NotificationType
from ledger_notify.models.push import PushSubscription
from ledger_notify.services.change_feed import ChangeFeed
from ledger_notify.services.retention import RetentionEngine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeNotificationStore:
    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.change_feed = change_feed or ChangeFeed()
        self.rows: Dict[str, Notification] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise StoreError("store unavailable")

    def seed(self, user_id: str, age: timedelta = timedelta(0), read: bool = False,
             type: NotificationType = NotificationType.PAYMENT_MADE) -> Notification:
        """Put a row straight into the table, without publishing it."""
        created = utcnow() - age
        n = Notification(
            id=uuid.uuid4().hex,
            user_id=user_id,
            type=type,
            title="Payment Made",
            message="test",
            read=read,
            created_at=created,
            updated_at=created,
        )
        self.rows[n.id] = n
        return n

    def ids_for(self, user_id: str) -> set:
        return {n.id for n in self.rows.values() if n.user_id == user_id}

    async def insert_notification(self, user_id: str, item: NotificationIn) -> Notification:
        self._check()
        now = utcnow()
        n = Notification(id=uuid.uuid4().hex, user_id=user_id, type=item.type, title=item.title,
                         message=item.message, data=item.data, read=False, created_at=now, updated_at=now)
        self.rows[n.id] = n
        self.change_feed.publish(n)
        return n

    async def list_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        self._check()
        notis = sorted((n for n in self.rows.values() if n.user_id == user_id),
                       key=lambda n: (n.created_at, n.id), reverse=True)
        return notis if limit is None else notis[:limit]

    async def list_ids(self, user_id: str):
        return [(n.id, n.created_at) for n in await self.list_notifications(user_id)]

    async def distinct_user_ids(self) -> List[str]:
        self._check()
        return sorted({n.user_id for n in self.rows.values()})

    async def delete_older_than(self, cutoff: datetime, read_only: bool = False) -> int:
        self._check()
        doomed = [n.id for n in self.rows.values() if n.created_at < cutoff and (n.read or not read_only)]
        for i in doomed:
            del self.rows[i]
        return len(doomed)

    async def delete_ids(self, user_id: str, ids: List[str]) -> int:
        self._check()
        removed = 0
        for i in ids:
            if i in self.rows and self.rows[i].user_id == user_id:
                del self.rows[i]
                removed += 1
        return removed

    async def delete_if_read(self, user_id: str, notification_id: str) -> int:
        self._check()
        n = self.rows.get(notification_id)
        if n is None or n.user_id != user_id or not n.read:
            return 0
        del self.rows[notification_id]
        return 1

    async def delete_notification(self, user_id: str, notification_id: str):
        self._check()
        n = self.rows.get(notification_id)
        if n is not None and n.user_id == user_id:
            del self.rows[notification_id]

    async def delete_all(self, user_id: str) -> int:
        return await self.delete_ids(user_id, list(self.ids_for(user_id)))

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        self._check()
        n = self.rows.get(notification_id)
        if n is None or n.user_id != user_id:
            return False
        self.rows[notification_id] = n.model_copy(update={"read": True, "updated_at": utcnow()})
        return True

    async def mark_all_read(self, user_id: str) -> int:
        self._check()
        updated = 0
        for i, n in list(self.rows.items()):
            if n.user_id == user_id and not n.read:
                self.rows[i] = n.model_copy(update={"read": True, "updated_at": utcnow()})
                updated += 1
        return updated

    async def count(self, read: Optional[bool] = None) -> int:
        self._check()
        return sum(1 for n in self.rows.values() if read is None or n.read == read)


class FakeSubscriptionStore:
    def __init__(self):
        self.rows: Dict[str, PushSubscription] = {}
        self.fail = False

    async def upsert_subscription(self, sub: PushSubscription) -> PushSubscription:
        if self.fail:
            raise StoreError("store unavailable")
        self.rows[sub.user_id] = sub
        return sub

    async def delete_subscription(self, user_id: str):
        self.rows.pop(user_id, None)

    async def get_subscription(self, user_id: str) -> Optional[PushSubscription]:
        if self.fail:
            raise StoreError("store unavailable")
        return self.rows.get(user_id)

    async def list_subscriptions(self, user_ids: List[str]) -> List[PushSubscription]:
        if self.fail:
            raise StoreError("store unavailable")
        return [self.rows[u] for u in dict.fromkeys(user_ids) if u in self.rows]


class ExpiredEndpoint(Exception):
    status_code = 410


class FakeSender:
    """Records deliveries; endpoints listed in `expired` fail with 410."""

    def __init__(self, expired=()):
        self.expired = set(expired)
        self.sent = []

    async def send(self, subscription: PushSubscription, payload: dict):
        if subscription.endpoint in self.expired:
            raise ExpiredEndpoint(f"push endpoint gone: {subscription.endpoint}")
        self.sent.append((subscription, payload))


def make_subscription(user_id: str, endpoint: Optional[str] = None) -> PushSubscription:
    return PushSubscription(
        user_id=user_id,
        endpoint=endpoint or f"https://push.example.com/{user_id}",
        p256dh="BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM",
        auth="tBHItJI5svbpez7KI4CCXg",
    )


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def store(change_feed):
    return FakeNotificationStore(change_feed)


@pytest.fixture
def subscriptions():
    return FakeSubscriptionStore()


@pytest.fixture
def retention(store):
    return RetentionEngine(store, read_delete_delay=0.01, concurrency=2)
