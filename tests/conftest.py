from __future__ import annotations

import os
import uuid
import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from affiliate_ledger.core.config import _strip_asyncpg_unsupported_params
from affiliate_ledger.db.session import get_db, get_sessionmaker

# Ensure Base + models are registered before create_all
from affiliate_ledger.db.base import Base  # noqa: F401
import affiliate_ledger.models  # noqa: F401

# The event loop is session scoped through pyproject.toml:
#   asyncio_default_fixture_loop_scope = "session"
#   asyncio_default_test_loop_scope = "session"


# ---------------------------------------------------------
# Database config
# ---------------------------------------------------------
@pytest.fixture(scope="session")
def database_url_async(tmp_path_factory) -> str:
    """
    PostgreSQL when DATABASE_URL_ASYNC points at one, otherwise a throwaway
    SQLite file (row locks and SERIALIZABLE only matter on PostgreSQL).
    """
    url = os.getenv("DATABASE_URL_ASYNC", "")
    if url.startswith("postgresql"):
        return _strip_asyncpg_unsupported_params(url)
    return f"sqlite+aiosqlite:///{tmp_path_factory.mktemp('db') / 'affiliate_ledger_test.db'}"


@pytest.fixture(scope="session")
def is_postgres(database_url_async: str) -> bool:
    return database_url_async.startswith("postgresql")


@pytest.fixture(scope="session")
def test_schema_name() -> str:
    return f"test_{uuid.uuid4().hex}"


# ---------------------------------------------------------
# Engine + schema lifecycle (CI-safe with retry)
# ---------------------------------------------------------
@pytest_asyncio.fixture(scope="session")
async def engine(database_url_async: str, is_postgres: bool, test_schema_name: str):
    if is_postgres:
        engine = create_async_engine(
            database_url_async,
            future=True,
            echo=False,
            poolclass=NullPool,
            connect_args={"server_settings": {"search_path": test_schema_name}},
        )
    else:
        engine = create_async_engine(
            database_url_async,
            future=True,
            echo=False,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )

    # ------------------------------
    # Wait/retry for DB readiness
    # ------------------------------
    last_exc = None
    for _ in range(30):  # ~30 seconds max wait
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            last_exc = None
            break
        except Exception as e:
            last_exc = e
            await asyncio.sleep(1)

    if last_exc is not None:
        raise RuntimeError(f"Database not reachable for tests: {last_exc}") from last_exc

    # ------------------------------
    # Create isolated test schema
    # ------------------------------
    async with engine.begin() as conn:
        if is_postgres:
            await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{test_schema_name}"'))
            await conn.execute(text(f'SET search_path TO "{test_schema_name}"'))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # ------------------------------
    # Teardown: drop schema
    # ------------------------------
    if is_postgres:
        async with engine.begin() as conn:
            await conn.execute(text(f'DROP SCHEMA IF EXISTS "{test_schema_name}" CASCADE'))

    await engine.dispose()


@pytest.fixture(scope="session")
def sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# ---------------------------------------------------------
# AUTOUSE: clean DB before every test
# ---------------------------------------------------------
@pytest_asyncio.fixture(autouse=True)
async def _truncate_tables(engine, is_postgres: bool, test_schema_name: str):
    """
    Ensure each test starts with a clean DB state.

    Empties SQLAlchemy-mapped tables (Base.metadata), which is safer and
    deterministic.
    """
    async with engine.begin() as conn:
        if is_postgres:
            await conn.execute(text(f'SET search_path TO "{test_schema_name}"'))
            table_names = [t.name for t in Base.metadata.sorted_tables]
            if table_names:
                qualified = ", ".join(f'"{test_schema_name}"."{name}"' for name in table_names)
                await conn.execute(text(f"TRUNCATE TABLE {qualified} RESTART IDENTITY CASCADE;"))
        else:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    yield


# ---------------------------------------------------------
# DB session for setup / assertions / service calls
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker):
    from affiliate_ledger.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_sessionmaker] = lambda: sessionmaker
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
