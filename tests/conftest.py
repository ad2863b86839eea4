"""Shared fixtures: a throwaway SQLite database per test and an ASGI client."""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import models  # noqa: F401
from database import Base, get_db
from main import app as fastapi_app
from models.enums import Role
from tests.factories import make_company, make_user


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'access.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def app(session_maker):
    async def _get_db():
        async with session_maker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def company(db):
    return await make_company(db)


@pytest_asyncio.fixture
async def pm(db, company):
    return await make_user(db, "pm@acme.test", Role.PROJECT_MANAGER, company=company, full_name="Pat Manager")


@pytest_asyncio.fixture
async def tradie(db):
    return await make_user(db, "tradie@example.test", Role.TRADIE, full_name="Terry Tradie")
