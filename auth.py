"""
Authentication dependency

Identity is owned by the external identity provider; this module only
verifies its access token and extracts the caller's user id and email.
"""

import logging
from typing import Optional
from fastapi import Header

from auth_utils import decode_jwt
from utils.errors import AuthError

logger = logging.getLogger(__name__)


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> dict:
    """
    Dependency function to get the current authenticated user.

    Returns:
        {"user_id": str, "email": Optional[str]}

    Raises:
        AuthError: missing, invalid or expired token
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing authentication token")
    token = authorization[len("Bearer "):].strip()

    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Cannot verify tokens: {e}")
        raise AuthError("Authentication is not configured") from e
    if not payload:
        raise AuthError("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token payload")

    return {"user_id": str(user_id), "email": payload.get("email")}
