"""Shared pytest fixtures: a fresh SQLite database per test and an API client."""

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.cache import InMemoryCache
from app.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from app.core.rate_limit import limiter
from app.main import app


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rbac.sqlite'}")
    await init_db(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest_asyncio.fixture()
async def client(session_factory, cache) -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to the app, sharing the test database and cache."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    original_cache = app.state.cache
    app.state.cache = cache
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http

    app.dependency_overrides.clear()
    app.state.cache = original_cache
    limiter.enabled = True
