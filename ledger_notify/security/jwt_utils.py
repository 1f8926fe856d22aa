# ledger_notify/security/jwt_utils.py
import jwt
from fastapi import Header, HTTPException, status

from ledger_notify import config


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT (WebSocket query param, etc.).
    Raises 401 if invalid or without a subject.
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    if "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token without subject",
        )
    return payload


def get_current_user(authorization_header: str) -> dict:
    """
    Takes the header `Authorization: Bearer <token>`,
    validates it and returns the payload.
    """
    if not authorization_header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    if not authorization_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format",
        )

    return decode_token(authorization_header.removeprefix("Bearer ").strip())


def current_user_id(authorization: str = Header(default="")) -> str:
    """FastAPI dependency: the `sub` of the caller's token."""
    return get_current_user(authorization)["sub"]


def admin_user_id(authorization: str = Header(default="")) -> str:
    payload = get_current_user(authorization)
    user_id = payload["sub"]
    if payload.get("role") != "admin" and user_id not in config.ADMIN_USER_IDS:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return user_id


def create_token(user_id: str, **claims) -> str:
    """Sign a token for `user_id`; used by tests and local tooling."""
    return jwt.encode({"sub": user_id, **claims}, config.JWT_SECRET, algorithm=config.JWT_ALG)
