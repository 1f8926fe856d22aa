# ledger_notify/models/push.py
from datetime import datetime
from typing import List, Optional

from ledger_notify.models.notification import CamelModel


class PushSubscription(CamelModel):
    user_id: str
    endpoint: str
    p256dh: str
    auth: str
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


class PushSubscriptionIn(CamelModel):
    """Browser PushSubscription as sent by the client (keys already base64url)."""
    endpoint: str
    p256dh: str
    auth: str
    user_agent: Optional[str] = None


class PushRequest(CamelModel):
    # everything optional here; PushBridge.validate turns bad input into a 400
    title: Optional[str] = None
    body: Optional[str] = None
    user_id: Optional[str] = None
    user_ids: Optional[List[str]] = None
    url: Optional[str] = None
    image: Optional[str] = None
    tag: Optional[str] = None
    notification_id: Optional[str] = None


class DeliveryDetail(CamelModel):
    success: bool
    user_id: str
    endpoint: str
    error: Optional[str] = None
    status_code: Optional[int] = None


class PushResult(CamelModel):
    message: str
    successful: int = 0
    failed: int = 0
    total: int = 0
    details: List[DeliveryDetail] = []
