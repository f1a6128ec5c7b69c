from typing import Optional

from fastapi import Header

from app.core.exceptions import AuthenticationError

IDENTITY_HEADER = "X-User-Id"


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias=IDENTITY_HEADER)) -> str:
    """
    Resolve the caller's opaque identity for this request.

    Authentication happens upstream (identity provider / gateway), which
    forwards the verified user id in the ``X-User-Id`` header.
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Not authenticated").to_http_exception()
    return x_user_id.strip()
