# ledger_notify/api/notifications.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ledger_notify import config
from ledger_notify.api.deps import get_handler, get_retention, get_store
from ledger_notify.infra.servicebus_consumer import consumer_status
from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.notification import Notification, NotificationStats
from ledger_notify.security.jwt_utils import admin_user_id, current_user_id

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _store_failed(action: str, e: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Could not {action}: {e}",
    )


@router.get("", response_model=List[Notification], response_model_by_alias=True)
async def list_notifications(user_id: str = Depends(current_user_id), store=Depends(get_store)):
    """The caller's newest notifications."""
    try:
        return await store.list_notifications(user_id, limit=config.FEED_SIZE)
    except StoreError as e:
        raise _store_failed("load notifications", e)


@router.get("/unread-count")
async def unread_count(user_id: str = Depends(current_user_id), store=Depends(get_store)):
    try:
        notis = await store.list_notifications(user_id, limit=config.FEED_SIZE)
    except StoreError as e:
        raise _store_failed("load notifications", e)
    return {"count": sum(1 for n in notis if not n.read)}


@router.post("/read-all")
async def mark_all_read(user_id: str = Depends(current_user_id), store=Depends(get_store)):
    try:
        updated = await store.mark_all_read(user_id)
    except StoreError as e:
        raise _store_failed("mark notifications as read", e)
    return {"ok": True, "updated": updated}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    store=Depends(get_store),
    retention=Depends(get_retention),
):
    """Mark as read; the row is deleted after the grace period."""
    try:
        found = await store.mark_read(user_id, notification_id)
    except StoreError as e:
        raise _store_failed("mark notification as read", e)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    retention.schedule_read_delete(user_id, notification_id)
    return {"ok": True}


@router.delete("/{notification_id}")
async def clear_notification(notification_id: str, user_id: str = Depends(current_user_id), store=Depends(get_store)):
    try:
        await store.delete_notification(user_id, notification_id)
    except StoreError as e:
        raise _store_failed("clear notification", e)
    return {"ok": True}


@router.delete("")
async def clear_all(user_id: str = Depends(current_user_id), store=Depends(get_store)):
    try:
        removed = await store.delete_all(user_id)
    except StoreError as e:
        raise _store_failed("clear notifications", e)
    return {"ok": True, "removed": removed}


@router.post("/activity")
async def publish_activity(body: dict, user_id: str = Depends(current_user_id), handler=Depends(get_handler)):
    """
    Same path as the queue consumer, for callers without Service Bus.
    The actor is always the caller.
    """
    try:
        created = await handler.process_activity({**body, "actorId": user_id})
    except StoreError as e:
        raise _store_failed("store notifications", e)
    return {"ok": True, "sent": len(created)}


# =========================
# Maintenance (admin)
# =========================

@router.get("/stats", response_model=NotificationStats, response_model_by_alias=True)
async def stats(_: str = Depends(admin_user_id), retention=Depends(get_retention)):
    """Table-wide counts, admins only."""
    return await retention.stats()


@router.post("/cleanup")
async def full_cleanup(_: str = Depends(admin_user_id), retention=Depends(get_retention)):
    removed = await retention.full_cleanup()
    result = await retention.stats()
    return {
        "removed": removed,
        "stats": result.model_dump(by_alias=True),
        "lastCleanup": retention.last_full_cleanup.isoformat(),
    }


@router.post("/cleanup/read")
async def quick_cleanup(_: str = Depends(admin_user_id), retention=Depends(get_retention)):
    return {"removed": await retention.purge_read()}


@router.get("/cleanup/status")
async def cleanup_status(_: str = Depends(admin_user_id), retention=Depends(get_retention)):
    last = retention.last_full_cleanup
    return {
        "lastCleanup": last.isoformat() if last else None,
        "pendingDeletes": retention.pending_deletes,
        "consumer": consumer_status(),
    }
