"""Caller identity.

Authentication happens upstream; the gateway forwards the verified user as
``X-User-Id`` / ``X-User-Email`` headers. A request without them is a guest.
"""
from __future__ import annotations
from fastapi import Header
from ..models.documents import AuthUser


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> AuthUser | None:
    if not x_user_id:
        return None
    return AuthUser(id=x_user_id, email=x_user_email)
