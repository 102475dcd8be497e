# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Redis Connection Factory — Async client for the idempotency store and queue.

Redis is optional infrastructure: connect_redis() returns None when the
server does not answer, and callers degrade (fail-open dedup, inline
queue) instead of failing.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError,
    RedisError,
    TimeoutError,
)

logger = logging.getLogger("flowsmith.redis")

_RETRY = Retry(ExponentialBackoff(cap=2, base=0.1), retries=3)
_RETRY_ERRORS = [ConnectionError, TimeoutError, BusyLoadingError, OSError]


def create_redis(url: str) -> aioredis.Redis:
    """
    Build an async Redis client (no I/O yet).

    Uses retry-on-error so stale pool connections are transparently reconnected.
    """
    return aioredis.from_url(
        url,
        decode_responses=True,
        max_connections=20,
        health_check_interval=15,
        retry_on_timeout=True,
        retry_on_error=_RETRY_ERRORS,
        retry=_RETRY,
        socket_connect_timeout=5,
        socket_timeout=10,
        socket_keepalive=True,
    )


async def ping(redis: Optional[aioredis.Redis]) -> bool:
    """True if redis answers PING."""
    if redis is None:
        return False
    try:
        return bool(await redis.ping())
    except (RedisError, OSError) as e:
        logger.debug("Redis ping failed: %s", e)
        return False


async def connect_redis(url: str) -> Optional[aioredis.Redis]:
    """Return a connected client, or None when Redis is unreachable."""
    client = create_redis(url)
    if await ping(client):
        logger.info("Redis connected: %s", url)
        return client
    logger.warning(
        "Redis unreachable at %s: idempotency dedup disabled, "
        "jobs run inline without durability or retries", url,
    )
    await close_redis(client)
    return None


async def close_redis(redis: Optional[aioredis.Redis]) -> None:
    """Gracefully close a client."""
    if redis is None:
        return
    try:
        await redis.aclose()
    except (RedisError, OSError) as e:
        logger.debug("Redis close failed: %s", e)
