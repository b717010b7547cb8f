"""
Pytest configuration and fixtures for testing
"""
import os

# Settings are read at import time; configure before the app is imported
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ.pop("ENV", None)
for _price_var in ("STRIPE_PRICE_STARTER", "STRIPE_PRICE_PROFESSIONAL", "STRIPE_PRICE_ENTERPRISE"):
    os.environ.pop(_price_var, None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from auth_utils import create_jwt
from database import Base, get_db
from services.stripe_client import get_processor
from tests.fakes import FakeProcessor, FrozenClock


@pytest.fixture
def test_engine(tmp_path):
    """
    File-backed SQLite engine per test, with tables created.

    NullPool keeps connections from being shared between the pytest event
    loop and the one TestClient runs the app in.
    """
    import database_models  # noqa: F401

    db_path = tmp_path / "test.db"

    # Schema is created through the sync driver so no event loop is involved
    setup_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(setup_engine)
    setup_engine.dispose()

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False,
        poolclass=NullPool,
    )
    yield engine


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """
    Fixture that provides an isolated database session for each test.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def fake_processor():
    return FakeProcessor()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a user."""
    def _headers(user_id: str = "user-1", email: str = "user-1@example.com") -> dict:
        return {"Authorization": f"Bearer {create_jwt(user_id, email)}"}
    return _headers


@pytest.fixture
def client(session_factory, fake_processor):
    """FastAPI TestClient fixture with test database and Stripe overrides"""
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processor] = lambda: fake_processor

    # raise_server_exceptions=False so unhandled errors surface as 500s
    test_client = TestClient(app, raise_server_exceptions=False)

    yield test_client

    app.dependency_overrides.clear()
