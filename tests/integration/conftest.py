# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Integration test fixtures — Real Redis + Real PostgreSQL.

These tests require running services at settings.REDIS_URL and
settings.DATABASE_URL; they are skipped when a service does not answer.
"""

import pytest
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from flowsmith.core.config import settings
from flowsmith.storage.database import Base, make_session_factory, override_engine_for_test

# Import models so tables are registered
import flowsmith.storage.models  # noqa: F401

TEST_PREFIX = "flowsmith_it:queue"


@pytest.fixture
async def real_redis():
    """Connect to real Redis and flush test keys after each test."""
    r = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await r.ping()
    except (RedisError, OSError) as e:
        await r.aclose()
        pytest.skip(f"Redis not reachable at {settings.REDIS_URL}: {e}")

    yield r

    for pattern in (f"{TEST_PREFIX}*", "idempotency:deploy_integration_*"):
        async for key in r.scan_iter(match=pattern):
            await r.delete(key)
    await r.aclose()


@pytest.fixture
async def real_db():
    """Create real PG tables, yield session factory, drop after test."""
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        await engine.dispose()
        pytest.skip(f"Database not reachable: {e}")

    override_engine_for_test(engine)
    yield make_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
