"""Queue message handling: complete only what was processed."""

import json

import pytest

from ledger_notify.infra.servicebus_consumer import process_message
from ledger_notify.services.notification_handler import NotificationHandler


class FakeMessage:
    def __init__(self, payload):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        # Service Bus bodies arrive as a sequence of byte sections
        self.body = [raw[:5], raw[5:]]


class FakeReceiver:
    def __init__(self):
        self.completed = []

    async def complete_message(self, msg):
        self.completed.append(msg)


def payment(recipient="b"):
    return {
        "type": "payment_made",
        "actorId": "a",
        "actorName": "Asha",
        "recipients": [recipient],
        "data": {"amount": 500, "supplierName": "Ravi Traders"},
    }


class TestProcessMessage:

    @pytest.mark.asyncio
    async def test_completes_after_storing(self, store):
        receiver = FakeReceiver()
        msg = FakeMessage(payment())

        assert await process_message(receiver, msg, NotificationHandler(store)) is True

        assert receiver.completed == [msg]
        assert len(store.ids_for("b")) == 1

    @pytest.mark.asyncio
    async def test_store_outage_leaves_message_for_redelivery(self, store):
        store.fail = True
        receiver = FakeReceiver()

        assert await process_message(receiver, FakeMessage(payment()), NotificationHandler(store)) is False

        assert receiver.completed == []
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_invalid_json_not_completed(self, store):
        receiver = FakeReceiver()
        assert await process_message(receiver, FakeMessage(b"not json"), NotificationHandler(store)) is False
        assert receiver.completed == []

    @pytest.mark.asyncio
    async def test_message_without_recipients_is_completed(self, store):
        """Nothing to notify is a success, not a retry."""
        receiver = FakeReceiver()
        msg = FakeMessage(payment(recipient="a"))
        assert await process_message(receiver, msg, NotificationHandler(store)) is True
        assert receiver.completed == [msg]
