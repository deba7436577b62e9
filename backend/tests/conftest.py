import os
import time
import uuid

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from easyshift.core.config import get_settings
from easyshift.core.dependencies import get_db, get_session_factory
from easyshift.main import app
from easyshift.models.restaurant import Base, Restaurant, UserRestaurant

# Retry backoff would otherwise sleep for seconds between scripted provider replies.
os.environ.setdefault("AI_BACKOFF_BASE_SECONDS", "0")
os.environ.setdefault("AI_EXTRACTION_PROVIDER", "mock")

DATA_URI_JPEG = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="
DATA_URI_PDF = "data:application/pdf;base64,JVBERi0xLjcK"
TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance (e.g. with a different batch size) across tests.
    get_settings.cache_clear()
    get_session_factory.cache_clear()
    yield
    get_settings.cache_clear()
    get_session_factory.cache_clear()


def _make_sqlite_engine():
    """In-memory SQLite shared across threads (TestClient runs the app in a worker thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine)


def _seed_restaurant(db, *, role: str = "owner", name: str = "Test Bistro"):
    """Create a restaurant and a member with ``role``; returns (restaurant, user_id)."""
    restaurant = Restaurant(name=name)
    db.add(restaurant)
    db.flush()
    user_id = uuid.uuid4()
    if role:
        db.add(UserRestaurant(user_id=user_id, restaurant_id=restaurant.id, role=role))
    db.commit()
    return restaurant, user_id


def _build_auth_header(sub, email: str = "tests@example.com") -> dict:
    """Mint a real HS256 bearer token signed with ``TEST_JWT_SECRET``."""
    token = jwt.encode(
        {"sub": str(sub), "email": email, "exp": int(time.time()) + 600},
        TEST_JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def session_factory(monkeypatch):
    """SQLite-backed ``get_db`` override plus JWT settings for the real auth dependency."""
    monkeypatch.setenv("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_JWT_AUDIENCE", "")
    engine, SessionLocal = _make_sqlite_engine()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield SessionLocal
    app.dependency_overrides.pop(get_db, None)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest_asyncio.fixture
async def client(session_factory):
    """In-process ASGI client (no uvicorn needed)."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
