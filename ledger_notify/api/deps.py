# ledger_notify/api/deps.py
from fastapi import HTTPException, Request, status


def get_store(request: Request):
    return request.app.state.store


def get_subscriptions(request: Request):
    return request.app.state.subscriptions


def get_retention(request: Request):
    return request.app.state.retention


def get_handler(request: Request):
    return request.app.state.handler


def get_push_bridge(request: Request):
    bridge = request.app.state.push_bridge
    if bridge is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push delivery is not configured",
        )
    return bridge
