from typing import Optional

from fastapi import Header, HTTPException, status


async def current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    """Acting user for ledger writes.

    Authentication lives in front of this service; the gateway forwards the
    authenticated user's id in ``X-User-Id``.
    """
    if x_user_id is None or x_user_id <= 0:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return x_user_id
