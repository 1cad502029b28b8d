import os

os.environ.setdefault("TELEMETRY_ENABLED", "false")

import pytest
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Import Base + all models so metadata is complete
from feedhub.models import Base

from feedhub.main import app
from feedhub.core.db import get_db


def _test_db_url(tmp_path) -> str:
    url = os.getenv("DATABASE_URL_TEST")
    if url:
        return url
    return f"sqlite+aiosqlite:///{tmp_path}/feedhub-test.db"


@pytest.fixture
async def async_engine(tmp_path):
    engine = create_async_engine(_test_db_url(tmp_path), future=True, pool_pre_ping=True)
    try:
        # fresh schema per test; pipelines commit, so there is no rollback-per-test
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
async def client(session_factory):
    """
    HTTP client whose requests get their own session from the test engine.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def as_chunks():
    """Split bytes into small async chunks so parsers see records cut mid-way."""
    async def _chunks(data: bytes, size: int = 7):
        for i in range(0, len(data), size):
            yield data[i:i + size]
    return _chunks
