"""
Authentication utilities: identity provider JWT verification
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from config.settings import settings

# JWT configuration
ALGORITHM = "HS256"


def create_jwt(user_id: str, email: Optional[str] = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Create a token shaped like the identity provider's access tokens"""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    payload = {
        "sub": user_id,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_expired_jwt(user_id: str, email: Optional[str] = None, expired_seconds_ago: int = 1) -> str:
    """
    Create an expired JWT token for testing purposes.

    Args:
        user_id: User ID to include in token
        email: Email claim
        expired_seconds_ago: How many seconds ago the token should have expired (default: 1)
    """
    return create_jwt(user_id, email, expires_in=timedelta(seconds=-expired_seconds_ago))


def decode_jwt(token: str):
    """Decode a JWT token. Returns None if invalid."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
