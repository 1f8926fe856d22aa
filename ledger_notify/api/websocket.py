# ledger_notify/api/websocket.py
import json
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from ledger_notify.models.notification import Notification, NotificationIn
from ledger_notify.security.jwt_utils import decode_token
from ledger_notify.services.feed import FeedSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def _dump(n: Notification) -> dict:
    return n.model_dump(mode="json", by_alias=True)


def _parse_command(text: str) -> dict:
    # json.JSONDecodeError is a ValueError
    command = json.loads(text)
    if not isinstance(command, dict):
        raise ValueError("command must be a JSON object")
    return command


async def _dispatch(session: FeedSession, command: dict):
    action = command.get("action")
    if action == "mark_read":
        await session.mark_read(str(command["id"]))
    elif action == "mark_all_read":
        await session.mark_all_read()
    elif action == "clear":
        await session.clear(str(command["id"]))
    elif action == "clear_all":
        await session.clear_all()
    elif action == "refresh":
        await session.load()
    elif action == "add":
        await session.add(NotificationIn.model_validate(command))
    else:
        raise ValueError(f"unknown action: {action!r}")


@router.websocket("/ws/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str = Query(...),
    alerts: bool = Query(False),
):
    """
    Live notification feed for one client session.
      ws://host/ws/notifications?token=JWT&alerts=true
    `alerts` says the client holds OS notification permission.
    """
    # 1) validate the token before accepting
    try:
        user_id = decode_token(token)["sub"]
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def on_change(notifications: List[Notification]):
        await websocket.send_json({
            "event": "snapshot",
            "notifications": [_dump(n) for n in notifications],
            "unreadCount": sum(1 for n in notifications if not n.read),
        })

    async def on_alert(notification: Notification):
        await websocket.send_json({"event": "alert", "notification": _dump(notification)})

    # 2) one feed session per connection
    state = websocket.app.state
    session = FeedSession(
        state.store,
        state.change_feed,
        state.retention,
        alerts_enabled=alerts,
        on_alert=on_alert,
        on_change=on_change,
    )

    try:
        # 3) load + realtime subscription + periodic maintenance
        await session.attach(user_id)

        # 4) client commands until it disconnects; bad frames get an error event
        while True:
            text = await websocket.receive_text()
            try:
                await _dispatch(session, _parse_command(text))
            except (KeyError, ValueError, ValidationError) as e:
                await websocket.send_json({"event": "error", "detail": str(e)})
    except WebSocketDisconnect:
        pass
    finally:
        # 5) release subscription and timers
        await session.close()
