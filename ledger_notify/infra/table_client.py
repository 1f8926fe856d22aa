# ledger_notify/infra/table_client.py
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from azure.core import MatchConditions
from azure.core.exceptions import AzureError, ResourceModifiedError, ResourceNotFoundError
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableClient, TableServiceClient

from ledger_notify import config
from ledger_notify.models.notification import Notification, NotificationIn, NotificationPayload
from ledger_notify.models.push import PushSubscription
from ledger_notify.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

# Table Storage rejects batches larger than this, and a batch must stay in one partition
BATCH_SIZE = 100
SUBSCRIPTION_ROW_KEY = "subscription"


class StoreError(Exception):
    """A query or mutation against Table Storage failed."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_service_client(conn_str: Optional[str] = None) -> TableServiceClient:
    conn_str = conn_str or config.AZURE_STORAGE_CONNECTION_STRING
    if not conn_str:
        raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING is not configured")
    return TableServiceClient.from_connection_string(conn_str=conn_str)


def _chunks(items: List, size: int = BATCH_SIZE) -> Iterable[List]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def entity_to_notification(entity: Dict) -> Notification:
    data = entity.get("data")
    if isinstance(data, str):
        data = json.loads(data) if data else None
    return Notification(
        id=entity["RowKey"],
        user_id=entity["PartitionKey"],
        type=entity["type"],
        title=entity.get("title", ""),
        message=entity.get("message", ""),
        data=NotificationPayload.model_validate(data) if data else None,
        read=bool(entity.get("read", False)),
        created_at=entity["created_at"],
        updated_at=entity.get("updated_at") or entity["created_at"],
    )


class NotificationStore:
    """
    Notifications in Table Storage.
    PartitionKey = user_id, RowKey = notification id.
    Every successful insert is published to the change feed.
    """

    def __init__(self, service: TableServiceClient, change_feed: ChangeFeed,
                 table_name: str = config.NOTIFICATIONS_TABLE):
        self.service = service
        self.change_feed = change_feed
        self.table_name = table_name
        self.table: TableClient = service.get_table_client(table_name=table_name)

    async def open(self):
        await self.service.create_table_if_not_exists(table_name=self.table_name)

    async def close(self):
        await self.table.close()

    async def _query(self, query_filter: str, parameters: Optional[Dict] = None,
                     select: Optional[List[str]] = None) -> List[Dict]:
        try:
            pages = self.table.query_entities(query_filter, parameters=parameters, select=select)
            return [entity async for entity in pages]
        except AzureError as e:
            raise StoreError(f"query failed ({query_filter}): {e}") from e

    async def _delete_batched(self, keys: List[Tuple[str, str]]) -> int:
        """keys: (PartitionKey, RowKey) pairs, any partitions."""
        by_partition: Dict[str, List[str]] = {}
        for pk, rk in keys:
            by_partition.setdefault(pk, []).append(rk)

        deleted = 0
        for pk, row_keys in by_partition.items():
            for chunk in _chunks(row_keys):
                ops = [("delete", {"PartitionKey": pk, "RowKey": rk}) for rk in chunk]
                try:
                    await self.table.submit_transaction(ops)
                    deleted += len(chunk)
                except AzureError as e:
                    # one row gone meanwhile fails the whole transaction; go row by row
                    logger.info("batch delete failed for partition=%s, retrying singly: %s", pk, e)
                    deleted += await self._delete_singly(pk, chunk)
        return deleted

    async def _delete_singly(self, pk: str, row_keys: List[str]) -> int:
        deleted = 0
        for rk in row_keys:
            try:
                # not-found is not an error for delete_entity
                await self.table.delete_entity(partition_key=pk, row_key=rk)
                deleted += 1
            except AzureError as e:
                logger.warning("delete failed for %s/%s: %s", pk, rk, e)
        return deleted

    async def insert_notification(self, user_id: str, item: NotificationIn) -> Notification:
        now = utcnow()
        entity = {
            "PartitionKey": user_id,
            "RowKey": uuid.uuid4().hex,
            "type": item.type.value,
            "title": item.title,
            "message": item.message,
            "data": item.data.model_dump_json(by_alias=True, exclude_none=True) if item.data else "",
            "read": False,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.table.create_entity(entity=entity)
        except AzureError as e:
            raise StoreError(f"insert failed for user={user_id}: {e}") from e

        notification = entity_to_notification(entity)
        self.change_feed.publish(notification)
        return notification

    async def list_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        """Newest first. Table Storage orders by RowKey, so sort here."""
        entities = await self._query("PartitionKey eq @pk", {"pk": user_id})
        notis = sorted((entity_to_notification(e) for e in entities),
                       key=lambda n: (n.created_at, n.id), reverse=True)
        return notis if limit is None else notis[:limit]

    async def list_ids(self, user_id: str) -> List[Tuple[str, datetime]]:
        """(id, created_at) for every row of the user, newest first."""
        entities = await self._query("PartitionKey eq @pk", {"pk": user_id},
                                     select=["RowKey", "created_at"])
        rows = [(e["RowKey"], e["created_at"]) for e in entities]
        rows.sort(key=lambda r: (r[1], r[0]), reverse=True)
        return rows

    async def distinct_user_ids(self) -> List[str]:
        try:
            seen = {e["PartitionKey"] async for e in self.table.list_entities(select=["PartitionKey"])}
        except AzureError as e:
            raise StoreError(f"listing users failed: {e}") from e
        return sorted(seen)

    async def delete_older_than(self, cutoff: datetime, read_only: bool = False) -> int:
        query = "created_at lt @cutoff"
        if read_only:
            query += " and read eq true"
        entities = await self._query(query, {"cutoff": cutoff}, select=["PartitionKey", "RowKey"])
        return await self._delete_batched([(e["PartitionKey"], e["RowKey"]) for e in entities])

    async def delete_ids(self, user_id: str, ids: List[str]) -> int:
        return await self._delete_batched([(user_id, i) for i in ids])

    async def delete_if_read(self, user_id: str, notification_id: str) -> int:
        """
        Conditional delete: only removes the row if it is still read.
        Returns the number of rows deleted (0 or 1). Missing rows are not an error.
        """
        try:
            entity = await self.table.get_entity(partition_key=user_id, row_key=notification_id)
        except ResourceNotFoundError:
            return 0
        except AzureError as e:
            raise StoreError(f"reading {notification_id} failed: {e}") from e
        if not entity.get("read"):
            return 0

        try:
            await self.table.delete_entity(
                partition_key=user_id,
                row_key=notification_id,
                etag=entity.metadata["etag"],
                match_condition=MatchConditions.IfNotModified,
            )
        except ResourceModifiedError:
            # changed since the read (e.g. marked unread again); leave it
            logger.info("notification %s changed before delete, kept", notification_id)
            return 0
        except AzureError as e:
            raise StoreError(f"delete failed for {notification_id}: {e}") from e
        return 1

    async def delete_notification(self, user_id: str, notification_id: str):
        try:
            await self.table.delete_entity(partition_key=user_id, row_key=notification_id)
        except AzureError as e:
            raise StoreError(f"delete failed for {notification_id}: {e}") from e

    async def delete_all(self, user_id: str) -> int:
        entities = await self._query("PartitionKey eq @pk", {"pk": user_id}, select=["PartitionKey", "RowKey"])
        return await self._delete_batched([(e["PartitionKey"], e["RowKey"]) for e in entities])

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """Returns False if the row no longer exists."""
        patch = {
            "PartitionKey": user_id,
            "RowKey": notification_id,
            "read": True,
            "updated_at": utcnow(),
        }
        try:
            await self.table.update_entity(entity=patch, mode=UpdateMode.MERGE)
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise StoreError(f"mark read failed for {notification_id}: {e}") from e
        return True

    async def mark_all_read(self, user_id: str) -> int:
        entities = await self._query("PartitionKey eq @pk and read eq false", {"pk": user_id},
                                     select=["PartitionKey", "RowKey"])
        now = utcnow()
        updated = 0
        try:
            for chunk in _chunks(entities):
                ops = [
                    ("update",
                     {"PartitionKey": e["PartitionKey"], "RowKey": e["RowKey"], "read": True, "updated_at": now},
                     {"mode": UpdateMode.MERGE})
                    for e in chunk
                ]
                await self.table.submit_transaction(ops)
                updated += len(chunk)
        except AzureError as e:
            raise StoreError(f"mark all read failed for user={user_id}: {e}") from e
        return updated

    async def count(self, read: Optional[bool] = None) -> int:
        try:
            if read is None:
                pages = self.table.list_entities(select=["RowKey"])
            else:
                pages = self.table.query_entities("read eq @read", parameters={"read": read}, select=["RowKey"])
            total = 0
            async for _ in pages:
                total += 1
        except AzureError as e:
            raise StoreError(f"count failed: {e}") from e
        return total


class PushSubscriptionStore:
    """
    One subscription row per user (PartitionKey = user_id).
    Subscribing from a second device overwrites the first.
    """

    def __init__(self, service: TableServiceClient, table_name: str = config.PUSH_SUBSCRIPTIONS_TABLE):
        self.service = service
        self.table_name = table_name
        self.table: TableClient = service.get_table_client(table_name=table_name)

    async def open(self):
        await self.service.create_table_if_not_exists(table_name=self.table_name)

    async def close(self):
        await self.table.close()

    async def upsert_subscription(self, sub: PushSubscription) -> PushSubscription:
        entity = {
            "PartitionKey": sub.user_id,
            "RowKey": SUBSCRIPTION_ROW_KEY,
            "endpoint": sub.endpoint,
            "p256dh": sub.p256dh,
            "auth": sub.auth,
            "user_agent": sub.user_agent or "",
            "created_at": sub.created_at or utcnow(),
        }
        try:
            await self.table.upsert_entity(entity=entity, mode=UpdateMode.REPLACE)
        except AzureError as e:
            raise StoreError(f"saving push subscription failed for user={sub.user_id}: {e}") from e
        return sub.model_copy(update={"created_at": entity["created_at"]})

    async def delete_subscription(self, user_id: str):
        try:
            await self.table.delete_entity(partition_key=user_id, row_key=SUBSCRIPTION_ROW_KEY)
        except AzureError as e:
            raise StoreError(f"removing push subscription failed for user={user_id}: {e}") from e

    async def get_subscription(self, user_id: str) -> Optional[PushSubscription]:
        try:
            entity = await self.table.get_entity(partition_key=user_id, row_key=SUBSCRIPTION_ROW_KEY)
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise StoreError(f"reading push subscription failed for user={user_id}: {e}") from e
        return PushSubscription(
            user_id=entity["PartitionKey"],
            endpoint=entity["endpoint"],
            p256dh=entity["p256dh"],
            auth=entity["auth"],
            user_agent=entity.get("user_agent") or None,
            created_at=entity.get("created_at"),
        )

    async def list_subscriptions(self, user_ids: List[str]) -> List[PushSubscription]:
        found = await asyncio.gather(*(self.get_subscription(u) for u in dict.fromkeys(user_ids)))
        return [s for s in found if s is not None]
