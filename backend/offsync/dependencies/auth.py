"""FastAPI dependencies that expose the *current user id*.

Authentication proper lives in front of this service: the gateway forwards
the authenticated user as an ``X-User-Id`` header.  With ``AUTH_DISABLED``
set, requests without the header act as the development user.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from fastapi import Request
from fastapi import status

from offsync.config import get_settings

USER_HEADER = "X-User-Id"

# Tests patch this flag to toggle dev and prod behaviour
AUTH_DISABLED: bool = get_settings().auth_disabled  # noqa: N816

DEV_USER_ID: int = 1


def parse_user_id(raw: Optional[str]) -> Optional[int]:
    """Return the positive integer user id in *raw*, or ``None``."""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw.isdigit() or int(raw) <= 0:
        return None
    return int(raw)


def get_current_user_id(request: Request) -> int:
    """Return the calling user's id or raise **401**."""
    raw = request.headers.get(USER_HEADER)
    if raw is None and AUTH_DISABLED:
        return DEV_USER_ID

    user_id = parse_user_id(raw)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid user identity",
        )
    return user_id


def resolve_ws_user(query_value: Optional[str], header_value: Optional[str]) -> Optional[int]:
    """User id for a WebSocket handshake (query parameter wins over header).

    Returns ``None`` when the connection must be refused.
    """
    raw = query_value if query_value is not None else header_value
    if raw is None and AUTH_DISABLED:
        return DEV_USER_ID
    return parse_user_id(raw)


__all__ = ["get_current_user_id", "resolve_ws_user", "parse_user_id", "USER_HEADER", "DEV_USER_ID"]
