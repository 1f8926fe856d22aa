# ledger_notify/infra/servicebus_consumer.py
import asyncio
import json
import logging
from datetime import datetime, timezone

from azure.servicebus import TransportType
from azure.servicebus.aio import ServiceBusClient

from ledger_notify import config

logger = logging.getLogger(__name__)

_status = {
    "startedAt": None,
    "lastMessageAt": None,
    "lastError": None,
    "processed": 0,
}


def consumer_status() -> dict:
    return {
        **_status,
        "queue": config.AZURE_SERVICE_BUS_QUEUE_NAME,
        "hasConnectionString": bool(config.AZURE_SERVICE_BUS_CONNECTION_STRING),
    }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def process_message(receiver, msg, handler) -> bool:
    """Handle one queue message. Returns True if it was completed."""
    try:
        # 1) read the body bytes and decode the JSON payload
        body_bytes = b"".join(part for part in msg.body)
        payload = json.loads(body_bytes.decode("utf-8"))
        logger.debug("[consumer] message received: %s", payload)

        # 2) persist notifications + realtime + push
        await handler.process_activity(payload)

        # 3) complete only once processed
        await receiver.complete_message(msg)
    except Exception as e:
        # not completed: redelivered, or dead-lettered after MaxDeliveryCount
        _status["lastError"] = str(e)
        logger.exception("[consumer] error processing message")
        return False

    _status["lastMessageAt"] = _now()
    _status["processed"] += 1
    return True


async def consume_activity(handler, conn_str=None, queue_name=None, backoff: float = 5):
    """
    Async Service Bus consumer for bookkeeping activity:
      - AMQP over WebSocket (443) so it works behind App Service.
      - Each message body is JSON handed to handler.process_activity(payload).
      - A message is completed only after it was processed.
      - Reconnects after connection errors.
    """
    conn_str = conn_str or config.AZURE_SERVICE_BUS_CONNECTION_STRING
    queue_name = queue_name or config.AZURE_SERVICE_BUS_QUEUE_NAME

    if not conn_str:
        logger.warning("[consumer] AZURE_SERVICE_BUS_CONNECTION_STRING missing, queue not consumed")
        return
    if not queue_name:
        logger.warning("[consumer] AZURE_SERVICE_BUS_QUEUE_NAME missing, queue not consumed")
        return

    _status["startedAt"] = _now()

    while True:
        try:
            logger.info("[consumer] connecting to Service Bus (queue: %s) over WebSockets", queue_name)
            async with ServiceBusClient.from_connection_string(
                conn_str,
                transport_type=TransportType.AmqpOverWebsocket,
            ) as sb_client:
                receiver = sb_client.get_queue_receiver(queue_name=queue_name, max_wait_time=20)
                async with receiver:
                    logger.info("[consumer] listening on queue: %s", queue_name)
                    while True:
                        messages = await receiver.receive_messages(max_message_count=10, max_wait_time=10)
                        if not messages:
                            await asyncio.sleep(0.5)
                            continue

                        for msg in messages:
                            await process_message(receiver, msg, handler)

            await asyncio.sleep(1)

        except asyncio.CancelledError:
            logger.info("[consumer] stopped")
            raise
        except Exception as e:
            _status["lastError"] = str(e)
            logger.warning("[consumer] connection error, retrying in %ss: %s", backoff, e)
            await asyncio.sleep(backoff)
