"""
Unit tests for identity provider token verification
"""
import jwt
import pytest

from auth import get_current_user
from auth_utils import ALGORITHM, create_expired_jwt, create_jwt, decode_jwt
from config.settings import settings
from utils.errors import AuthError


def test_create_and_decode_jwt():
    token = create_jwt("user-123", "test@example.com")

    payload = decode_jwt(token)

    assert payload is not None
    assert payload["sub"] == "user-123"
    assert payload["email"] == "test@example.com"
    assert payload["aud"] == "authenticated"


def test_expired_token_is_rejected():
    token = create_expired_jwt("user-123", expired_seconds_ago=10)
    assert decode_jwt(token) is None


def test_token_signed_with_other_secret_is_rejected():
    token = jwt.encode({"sub": "user-123", "aud": "authenticated"}, "not-the-secret", algorithm=ALGORITHM)
    assert decode_jwt(token) is None


def test_token_for_other_audience_is_rejected():
    token = jwt.encode({"sub": "user-123", "aud": "other"}, settings.jwt_secret_key, algorithm=ALGORITHM)
    assert decode_jwt(token) is None


def test_decode_without_secret_raises(monkeypatch):
    monkeypatch.setattr(settings, "jwt_secret_key", None)
    with pytest.raises(ValueError):
        decode_jwt("anything")


@pytest.mark.asyncio
async def test_get_current_user_from_bearer_token():
    token = create_jwt("user-123", "test@example.com")

    user = await get_current_user(authorization=f"Bearer {token}")

    assert user == {"user_id": "user-123", "email": "test@example.com"}


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer not-a-jwt"])
async def test_get_current_user_rejects_bad_headers(header):
    with pytest.raises(AuthError):
        await get_current_user(authorization=header)


@pytest.mark.asyncio
async def test_get_current_user_requires_subject():
    token = jwt.encode({"email": "x@example.com", "aud": "authenticated"}, settings.jwt_secret_key, algorithm=ALGORITHM)
    with pytest.raises(AuthError):
        await get_current_user(authorization=f"Bearer {token}")
