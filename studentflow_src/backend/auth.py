"""Caller identity.

Sessions are handled by the auth service in front of this API; it forwards the
resolved user id in ``X-User-Id`` and this service trusts it.
"""
from typing import Optional
from fastapi import Header, HTTPException, status


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id.strip()
