"""
Test infrastructure for the Conduit API.

Strategy
--------
- Every test builds its own application with ``create_app`` and a
  ``Settings`` object pointing at SQLite in-memory via aiosqlite, so no
  running Postgres is needed and no state leaks between tests.
- ``build_engine`` gives in-memory SQLite a StaticPool: all sessions share
  the single connection that holds the database.
- httpx's ASGITransport does not run the lifespan, so tables are created
  by the fixture and Redis is never contacted.  ``cache._redis = None``
  keeps the CacheManager in its degraded mode (reads miss, writes skip).
- ``db_session`` comes from the same session factory the app uses, so
  service-level tests and HTTP tests see the same database.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import Settings
from conduit.database import Base, create_tables
from conduit.main import create_app

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_settings(**overrides) -> Settings:
    values = dict(
        DATABASE_URL=TEST_DATABASE_URL,
        DATABASE_ISOLATION_LEVEL=None,
        CREATE_TABLES_ON_STARTUP=False,
        JWT_SECRET_KEY="test-secret",
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def app(settings: Settings):
    """A fresh application with its tables created; disposed afterwards."""
    application = create_app(settings)
    application.state.cache._redis = None
    engine = application.state.engine
    await create_tables(engine)
    yield application
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(app) -> AsyncSession:
    """
    Yield a live AsyncSession for tests that drive the services directly
    (seeding data, asserting store state).
    """
    async with app.state.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(app) -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

async def register(client: AsyncClient, username: str, email: str | None = None, password: str = "password123") -> dict:
    """Register *username* and return the ``user`` body (includes ``token``)."""
    resp = await client.post("/api/users", json={
        "user": {
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
        }
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]


def auth(user: dict) -> dict:
    return {"Authorization": f"Token {user['token']}"}


async def create_article(client: AsyncClient, user: dict, title: str, tags: list[str] | None = None, **fields) -> dict:
    payload = {
        "title": title,
        "description": fields.get("description", f"About {title}"),
        "body": fields.get("body", f"Body of {title}"),
    }
    if tags is not None:
        payload["tagList"] = tags
    resp = await client.post("/api/articles", json={"article": payload}, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()["article"]
