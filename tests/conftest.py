"""Shared fixtures: a throwaway SQLite database, seed helpers and a test queue."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import toolserver.models  # noqa: F401 – register all models
from toolserver.db import Base
from toolserver.engine.execution_store import ExecutionStore
from toolserver.engine.locks import MemoryLockStore
from toolserver.engine.work_queue import AsyncioWorkQueue

from tests.factories import Seed


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'toolserver-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    return ExecutionStore(session_factory)


@pytest.fixture
def locks():
    return MemoryLockStore()


@pytest.fixture
async def queue(locks):
    queue = AsyncioWorkQueue(locks=locks, concurrency=2, backoff_seconds=0)
    yield queue
    await queue.stop()


@pytest.fixture
def seed(db):
    return Seed(db)
