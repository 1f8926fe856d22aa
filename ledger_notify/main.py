# ledger_notify/main.py
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledger_notify import config
from ledger_notify.api.notifications import router as notifications_router
from ledger_notify.api.push import router as push_router
from ledger_notify.api.websocket import router as ws_router
from ledger_notify.infra.servicebus_consumer import consume_activity
from ledger_notify.infra.table_client import NotificationStore, PushSubscriptionStore, get_service_client
from ledger_notify.infra.webpush_sender import WebPushSender
from ledger_notify.services.change_feed import ChangeFeed
from ledger_notify.services.notification_handler import NotificationHandler
from ledger_notify.services.push_bridge import PushBridge
from ledger_notify.services.retention import RetentionEngine

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("ledger_notify.main")


def wire_services(app: FastAPI, store, subscriptions, change_feed: ChangeFeed, push_bridge=None):
    """Put the service graph on app.state; tests call this with fakes."""
    app.state.store = store
    app.state.subscriptions = subscriptions
    app.state.change_feed = change_feed
    app.state.retention = RetentionEngine(store)
    app.state.push_bridge = push_bridge
    app.state.handler = NotificationHandler(store, push_bridge)


def create_app() -> FastAPI:
    app = FastAPI(title="Ledger Notification Service")

    # 1) permissive CORS, also answers OPTIONS preflights with 200
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 2) HTTP + WebSocket routes
    app.include_router(notifications_router)
    app.include_router(push_router)
    app.include_router(ws_router)

    app.state.consumer_task = None

    @app.on_event("startup")
    async def startup_event():
        # 1) services already wired (tests)
        if getattr(app.state, "store", None) is not None:
            return

        # 2) Azure tables, created if missing
        service = get_service_client()
        change_feed = ChangeFeed()
        store = NotificationStore(service, change_feed)
        subscriptions = PushSubscriptionStore(service)
        await store.open()
        await subscriptions.open()

        # 3) push delivery only with a VAPID key
        bridge = None
        if config.VAPID_PRIVATE_KEY:
            bridge = PushBridge(subscriptions, WebPushSender())
        else:
            log.warning("VAPID_PRIVATE_KEY missing, push delivery disabled")

        app.state.table_service = service
        wire_services(app, store, subscriptions, change_feed, bridge)

        # 4) background consumer of the activity queue
        app.state.consumer_task = asyncio.create_task(consume_activity(app.state.handler))

    @app.on_event("shutdown")
    async def shutdown_event():
        # 1) stop consuming
        task = app.state.consumer_task
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        # 2) drop pending delayed deletes
        retention = getattr(app.state, "retention", None)
        if retention is not None:
            await retention.shutdown()
        # 3) close table clients
        service = getattr(app.state, "table_service", None)
        if service is not None:
            await app.state.store.close()
            await app.state.subscriptions.close()
            await service.close()

    return app


app = create_app()
