# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.
"""Integration tests with REAL Redis."""

import asyncio

import pytest

from flowsmith.kernel.queue import DurableQueue
from flowsmith.protocols.jobs import JobKind, ValidateJobData
from flowsmith.resilience.idempotency import IdempotencyKeyer

TENANT = "integration"
TEST_PREFIX = "flowsmith_it:queue"


class TestRealRedisQueue:
    @pytest.mark.asyncio
    async def test_consumer_loop_runs_jobs(self, real_redis):
        queue = DurableQueue(real_redis, prefix=TEST_PREFIX, poll_interval=1)
        done = asyncio.Event()
        seen = []

        async def handler(data):
            seen.append(data.workflow_id)
            done.set()
            return {"ok": True}

        queue.register(JobKind.VALIDATE, handler)
        await queue.start()
        try:
            await queue.enqueue(JobKind.VALIDATE, ValidateJobData(
                workflow_id=7, workflow_json={}, request_id="it_1",
            ), job_id="it_job_1")
            await asyncio.wait_for(done.wait(), timeout=5)
        finally:
            await queue.stop()

        assert seen == [7]
        health = await queue.health()
        assert health["validate"]["waiting"] == 0

    @pytest.mark.asyncio
    async def test_dedup_survives_reconnect(self, real_redis):
        first = DurableQueue(real_redis, prefix=TEST_PREFIX)
        second = DurableQueue(real_redis, prefix=TEST_PREFIX)
        data = ValidateJobData(workflow_id=1, workflow_json={}, request_id="it_2")

        a = await first.enqueue(JobKind.VALIDATE, data, job_id="it_job_2")
        b = await second.enqueue(JobKind.VALIDATE, data, job_id="it_job_2")

        assert a.deduplicated is False
        assert b.deduplicated is True


class TestRealRedisIdempotency:
    @pytest.mark.asyncio
    async def test_lifecycle_and_ttl(self, real_redis):
        keyer = IdempotencyKeyer(real_redis, started_ttl=60, completed_ttl=120)
        key = keyer.key(f"{TENANT}_t1", {"name": "wf"})

        await keyer.mark_started(key)
        assert await keyer.is_duplicate(key) is True
        assert 0 < await real_redis.ttl(f"idempotency:{key}") <= 60

        await keyer.mark_completed(key, {"scenarioId": "s"})
        assert await keyer.get_result(key) == {"scenarioId": "s"}
        assert 60 < await real_redis.ttl(f"idempotency:{key}") <= 120
