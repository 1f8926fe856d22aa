# ledger_notify/api/push.py
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ledger_notify import config
from ledger_notify.api.deps import get_push_bridge, get_subscriptions
from ledger_notify.infra.table_client import StoreError
from ledger_notify.models.push import PushRequest, PushResult, PushSubscription, PushSubscriptionIn
from ledger_notify.security.jwt_utils import current_user_id
from ledger_notify.services.push_bridge import PushLookupError, PushValidationError

router = APIRouter(prefix="/push", tags=["push"])


@router.post("/send", response_model=PushResult, response_model_by_alias=True)
async def send_push(body: PushRequest, _: str = Depends(current_user_id), bridge=Depends(get_push_bridge)):
    """
    Deliver a push message to every device of the target users.
    200 even when some (or all) deliveries failed; see successful/failed.
    """
    try:
        return await bridge.send(body)
    except PushValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PushLookupError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/vapid-public-key")
async def vapid_public_key():
    if not config.VAPID_PUBLIC_KEY:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Push is not configured")
    return {"publicKey": config.VAPID_PUBLIC_KEY}


@router.put("/subscription")
async def subscribe(
    body: PushSubscriptionIn,
    request: Request,
    user_id: str = Depends(current_user_id),
    subscriptions=Depends(get_subscriptions),
):
    """Register this device; replaces any device registered before for the same user."""
    sub = PushSubscription(
        user_id=user_id,
        endpoint=body.endpoint,
        p256dh=body.p256dh,
        auth=body.auth,
        user_agent=body.user_agent or request.headers.get("user-agent"),
    )
    try:
        await subscriptions.upsert_subscription(sub)
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to save push subscription: {e}",
        )
    return {"ok": True}


@router.delete("/subscription")
async def unsubscribe(user_id: str = Depends(current_user_id), subscriptions=Depends(get_subscriptions)):
    try:
        await subscriptions.delete_subscription(user_id)
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to remove push subscription: {e}",
        )
    return {"ok": True}


@router.get("/subscription")
async def subscription_status(user_id: str = Depends(current_user_id), subscriptions=Depends(get_subscriptions)):
    try:
        sub = await subscriptions.get_subscription(user_id)
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return {
        "subscribed": sub is not None,
        "endpoint": sub.endpoint if sub else None,
        "userAgent": sub.user_agent if sub else None,
    }
