# ledger_notify/infra/webpush_sender.py
import asyncio
import json
import logging

from pywebpush import WebPushException, webpush

from ledger_notify import config
from ledger_notify.models.push import PushSubscription

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class WebPushSender:
    """Sends one encrypted Web Push message per call, signed with the server VAPID keys."""

    def __init__(self, private_key: str = config.VAPID_PRIVATE_KEY,
                 subject: str = config.VAPID_SUBJECT, ttl: int = 24 * 60 * 60):
        if not private_key:
            raise RuntimeError("VAPID_PRIVATE_KEY is not configured")
        self.private_key = private_key
        self.subject = subject
        self.ttl = ttl

    async def send(self, subscription: PushSubscription, payload: dict):
        subscription_info = {
            "endpoint": subscription.endpoint,
            "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
        }
        try:
            # pywebpush is blocking (requests); keep it off the event loop
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription_info,
                data=json.dumps(payload),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise DeliveryError(str(e), status_code) from e
