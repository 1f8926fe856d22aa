# ledger_notify/models/queue_message.py
from typing import List, Optional

from ledger_notify.models.notification import CamelModel, NotificationPayload, NotificationType


class ActivityMessage(CamelModel):
    """
    A bookkeeping event published by the main app, e.g.
      {"type": "payment_made", "actorId": "u1", "actorName": "Asha",
       "recipients": ["u2", "u3"], "data": {"amount": 1200, "supplierName": "Ravi Traders"}}
    """
    type: NotificationType
    actor_id: str
    actor_name: str
    recipients: List[str] = []
    data: Optional[NotificationPayload] = None
