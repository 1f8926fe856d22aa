# ledger_notify/services/notification_handler.py
import logging
from typing import List, Optional

from pydantic import ValidationError

from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.notification import Notification, NotificationIn, NotificationPayload, NotificationType
from ledger_notify.models.push import PushRequest
from ledger_notify.models.queue_message import ActivityMessage

logger = logging.getLogger(__name__)

ACTIONS = {
    NotificationType.TRANSACTION_CREATED: "created",
    NotificationType.TRANSACTION_UPDATED: "updated",
    NotificationType.TRANSACTION_DELETED: "deleted",
    NotificationType.PAYMENT_MADE: "payment",
    NotificationType.SUPPLIER_ADDED: "added",
}


def format_amount(amount: Optional[float]) -> str:
    if amount is None:
        return "0"
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def render(msg: ActivityMessage):
    """Title and message text for an activity."""
    data = msg.data or NotificationPayload()
    who = msg.actor_name
    supplier = data.supplier_name or "a supplier"
    amount = format_amount(data.amount)

    if msg.type is NotificationType.TRANSACTION_CREATED:
        return "New Transaction Added", f"{who} purchased ₹{amount} supplies from {supplier}"
    if msg.type is NotificationType.TRANSACTION_UPDATED:
        return "Transaction Updated", f"{who} updated transaction with {supplier} (₹{amount})"
    if msg.type is NotificationType.TRANSACTION_DELETED:
        return "Transaction Deleted", f"{who} deleted transaction with {supplier} (₹{amount})"
    if msg.type is NotificationType.PAYMENT_MADE:
        return "Payment Made", f"{who} made payment of ₹{amount} to {supplier}"
    return "New Supplier Added", f"{who} added new supplier: {supplier}"


class NotificationHandler:
    """
    Turns bookkeeping activity into notifications for the other owners.
    Recipients come from the message; the actor never notifies themselves.
    """

    def __init__(self, store, push_bridge=None):
        self.store = store
        self.push_bridge = push_bridge

    async def process_activity(self, raw: dict) -> List[Notification]:
        try:
            msg = ActivityMessage.model_validate(raw)
        except ValidationError as e:
            logger.warning("dropping malformed activity message: %s", e)
            return []

        recipients = [u for u in dict.fromkeys(msg.recipients) if u != msg.actor_id]
        if not recipients:
            # nobody to notify
            return []

        title, text = render(msg)
        data = (msg.data or NotificationPayload()).model_copy(
            update={"user_action": ACTIONS[msg.type], "user_name": msg.actor_name}
        )
        item = NotificationIn(type=msg.type, title=title, message=text, data=data)

        created = []
        for user_id in recipients:
            try:
                created.append(await self.store.insert_notification(user_id, item))
            except StoreError:
                logger.exception("error sending notification to user=%s", user_id)
        logger.info("notifications sent to %d of %d users", len(created), len(recipients))
        if not created:
            # nothing persisted: let the caller retry (the queue redelivers)
            raise StoreError(f"no notification stored for {msg.type.value} by {msg.actor_id}")

        if self.push_bridge is not None:
            await self._push(created, title, text)
        return created

    async def _push(self, created: List[Notification], title: str, text: str):
        req = PushRequest(
            title=title,
            body=text,
            user_ids=[n.user_id for n in created],
            tag=created[0].type.value,
        )
        try:
            result = await self.push_bridge.send(req)
        except Exception:
            logger.exception("push fan-out failed")
            return
        logger.info("push fan-out: successful=%d failed=%d", result.successful, result.failed)
