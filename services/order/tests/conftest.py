"""Shared fixtures: a file-backed async SQLite store per test."""

import pytest
import pytest_asyncio

from order_service.db import create_engine, create_schema, create_session_factory
from order_service.retry import RetryPolicy
from order_service.store import OrderStore


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def store(session_factory):
    async with session_factory() as session:
        yield OrderStore(session, RetryPolicy(max_attempts=3, delay_seconds=0))
