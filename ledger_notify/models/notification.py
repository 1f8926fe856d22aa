# ledger_notify/models/notification.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class NotificationType(str, Enum):
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    SUPPLIER_ADDED = "supplier_added"
    PAYMENT_MADE = "payment_made"


class CamelModel(BaseModel):
    # snake_case in Python, camelCase on the wire
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NotificationPayload(CamelModel):
    transaction_id: Optional[str] = None
    supplier_id: Optional[str] = None
    amount: Optional[float] = None
    supplier_name: Optional[str] = None
    user_action: Optional[str] = None
    user_name: Optional[str] = None


class Notification(CamelModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Optional[NotificationPayload] = None
    read: bool = False
    created_at: datetime
    updated_at: datetime


class NotificationIn(CamelModel):
    """Fields a caller supplies; id, owner, read flag and timestamps come from the store."""
    type: NotificationType
    title: str
    message: str
    data: Optional[NotificationPayload] = None


class NotificationStats(CamelModel):
    total: int = 0
    read: int = 0
    unread: int = 0
    read_percentage: int = 0

    @classmethod
    def from_counts(cls, total: int, read: int) -> "NotificationStats":
        unread = total - read
        # half-up, not banker's rounding
        pct = int(read * 100 / total + 0.5) if total > 0 else 0
        return cls(total=total, read=read, unread=unread, read_percentage=pct)
