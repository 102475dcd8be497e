# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.
"""Unit tests for idempotency keys and IdempotencyKeyer."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from flowsmith.resilience.idempotency import (
    IdempotencyKeyer,
    content_hash,
    idempotency_key,
)


class TestIdempotencyKey:
    def test_format(self, contact_workflow):
        key = idempotency_key("acme", contact_workflow)
        prefix, tenant, digest = key.split("_", 2)
        assert prefix == "deploy"
        assert tenant == "acme"
        assert len(digest) == 16
        assert all(c in "0123456789abcdef" for c in digest)

    def test_deterministic(self, contact_workflow):
        assert idempotency_key("acme", contact_workflow) == idempotency_key("acme", contact_workflow)

    def test_tenant_scoped(self, contact_workflow):
        assert idempotency_key("a", contact_workflow) != idempotency_key("b", contact_workflow)

    def test_content_change_changes_key(self, contact_workflow):
        before = idempotency_key("acme", contact_workflow)
        contact_workflow["name"] = "Renamed"
        assert idempotency_key("acme", contact_workflow) != before

    def test_serialization_sensitive(self):
        """Key order is part of the hashed content."""
        a = {"name": "x", "description": "y"}
        b = {"description": "y", "name": "x"}
        assert a == b
        assert content_hash(a) != content_hash(b)

    def test_raw_text_hashed_as_is(self):
        payload = {"name": "x"}
        assert content_hash(json.dumps(payload)) == content_hash(payload)


class TestIdempotencyKeyer:
    @pytest.mark.asyncio
    async def test_not_duplicate_initially(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis)
        assert await keyer.is_duplicate("deploy_t_abc") is False
        assert await keyer.get_result("deploy_t_abc") is None

    @pytest.mark.asyncio
    async def test_started_is_duplicate_without_result(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis)
        await keyer.mark_started("deploy_t_abc")
        assert await keyer.is_duplicate("deploy_t_abc") is True
        assert await keyer.get_result("deploy_t_abc") is None
        record = await keyer.get_record("deploy_t_abc")
        assert record["status"] == "started"
        assert "timestamp" in record

    @pytest.mark.asyncio
    async def test_completed_returns_result(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis)
        await keyer.mark_started("k")
        await keyer.mark_completed("k", {"scenarioId": "s1", "viewUrl": "https://x"})
        assert await keyer.get_result("k") == {"scenarioId": "s1", "viewUrl": "https://x"}

    @pytest.mark.asyncio
    async def test_ttls(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis, started_ttl=3600, completed_ttl=86400)
        await keyer.mark_started("k")
        assert 0 < await mock_redis.ttl("idempotency:k") <= 3600
        await keyer.mark_completed("k", {})
        assert 3600 < await mock_redis.ttl("idempotency:k") <= 86400

    @pytest.mark.asyncio
    async def test_started_ttl_override(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis)
        await keyer.mark_started("k", ttl=10)
        assert await mock_redis.ttl("idempotency:k") <= 10

    @pytest.mark.asyncio
    async def test_clear(self, mock_redis):
        keyer = IdempotencyKeyer(mock_redis)
        await keyer.mark_started("k")
        await keyer.clear("k")
        assert await keyer.is_duplicate("k") is False


class TestIdempotencyFailOpen:
    @pytest.mark.asyncio
    async def test_no_store(self):
        keyer = IdempotencyKeyer(None)
        assert keyer.available is False
        await keyer.mark_started("k")
        await keyer.mark_completed("k", {"a": 1})
        assert await keyer.is_duplicate("k") is False
        assert await keyer.get_result("k") is None

    @pytest.mark.asyncio
    async def test_store_errors_swallowed(self):
        broken = MagicMock()
        broken.exists = AsyncMock(side_effect=RedisConnectionError("down"))
        broken.get = AsyncMock(side_effect=RedisConnectionError("down"))
        broken.setex = AsyncMock(side_effect=RedisConnectionError("down"))
        keyer = IdempotencyKeyer(broken)

        await keyer.mark_started("k")
        assert await keyer.is_duplicate("k") is False
        assert await keyer.get_result("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_record(self, mock_redis):
        await mock_redis.set("idempotency:k", "not-json")
        keyer = IdempotencyKeyer(mock_redis)
        assert await keyer.get_record("k") is None
