# ledger_notify/services/push_bridge.py
import asyncio
import logging
from typing import List

from ledger_notify import config
from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.push import DeliveryDetail, PushRequest, PushResult, PushSubscription

logger = logging.getLogger(__name__)


class PushValidationError(ValueError):
    """Bad push request; maps to HTTP 400."""


class PushLookupError(RuntimeError):
    """Subscriptions could not be read; maps to HTTP 500."""


class PushBridge:
    """
    Fans a titled message out to every stored push subscription of a set of
    users. Partial delivery is the normal case: failures are counted and
    reported, never raised, and stale subscriptions are left in place.
    """

    def __init__(self, subscriptions, sender, default_tag: str = config.PUSH_DEFAULT_TAG):
        self.subscriptions = subscriptions
        self.sender = sender
        self.default_tag = default_tag

    @staticmethod
    def target_users(req: PushRequest) -> List[str]:
        if not req.title or not req.body:
            raise PushValidationError("Title and body are required")
        if req.user_id and req.user_ids:
            raise PushValidationError("Provide either userId or userIds, not both")
        if req.user_id:
            return [req.user_id]
        if req.user_ids:
            return list(req.user_ids)
        raise PushValidationError("Either userId or userIds must be provided")

    def build_payload(self, req: PushRequest) -> dict:
        return {
            "title": req.title,
            "body": req.body,
            "url": req.url or "/",
            "image": req.image,
            "tag": req.tag or self.default_tag,
            "notificationId": req.notification_id,
        }

    async def send(self, req: PushRequest) -> PushResult:
        targets = self.target_users(req)

        try:
            subs = await self.subscriptions.list_subscriptions(targets)
        except StoreError as e:
            logger.exception("error fetching push subscriptions")
            raise PushLookupError("Failed to fetch push subscriptions") from e

        if not subs:
            return PushResult(message="No push subscriptions found for specified users")

        payload = self.build_payload(req)
        details = await asyncio.gather(*(self._deliver(s, payload) for s in subs))
        successful = sum(1 for d in details if d.success)
        logger.info("push processed: successful=%d failed=%d", successful, len(details) - successful)
        return PushResult(
            message="Push notifications processed",
            successful=successful,
            failed=len(details) - successful,
            total=len(details),
            details=list(details),
        )

    async def _deliver(self, sub: PushSubscription, payload: dict) -> DeliveryDetail:
        try:
            await self.sender.send(sub, payload)
        except Exception as e:
            logger.warning("failed to send push notification to user=%s: %s", sub.user_id, e)
            return DeliveryDetail(
                success=False,
                user_id=sub.user_id,
                endpoint=sub.endpoint,
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )
        return DeliveryDetail(success=True, user_id=sub.user_id, endpoint=sub.endpoint)
