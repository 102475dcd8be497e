# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""Tests for AppContext wiring and degraded-mode equivalence."""

import pytest

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.generator.workflow_generator import LlmBackedGenerator, TemplateOnlyGenerator
from flowsmith.kernel.queue import DurableQueue, InlineQueue
from flowsmith.protocols.jobs import JobKind
from flowsmith.runtime.llm_client import LLMClient
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository


async def _seed(ctx, workflow_json):
    async with ctx.session_factory() as db:
        row = await WorkflowRepository(db).create("acme", "Contact", workflow_json)
        await db.commit()
        return row.id


async def _steps(ctx, workflow_id):
    async with ctx.session_factory() as db:
        rows = await WorkflowLogRepository(db).list_by_workflow(workflow_id)
        workflow = await WorkflowRepository(db).get(workflow_id)
    return workflow.status, sorted((r.status, r.step_name) for r in rows)


class TestContextWiring:
    @pytest.mark.asyncio
    async def test_degraded_without_redis(self, make_context):
        ctx = await make_context(redis=None)
        assert ctx.degraded is True
        assert isinstance(ctx.queue, InlineQueue)
        assert ctx.keyer.available is False
        assert isinstance(ctx.generator, TemplateOnlyGenerator)
        assert pipeline_metrics.get_gauge("queue_durable") == 0.0
        await ctx.shutdown()

    @pytest.mark.asyncio
    async def test_durable_with_redis(self, make_context, mock_redis):
        ctx = await make_context(redis=mock_redis)
        assert ctx.degraded is False
        assert isinstance(ctx.queue, DurableQueue)
        assert ctx.keyer.available is True
        assert pipeline_metrics.get_gauge("queue_durable") == 1.0
        await ctx.shutdown()

    @pytest.mark.asyncio
    async def test_llm_backed_generator_with_key(self, make_context):
        ctx = await make_context(llm=LLMClient(api_key="sk-test"))
        assert isinstance(ctx.generator, LlmBackedGenerator)


class TestDegradedEquivalence:
    @pytest.mark.asyncio
    async def test_same_side_effects_inline_and_durable(
        self, make_context, mock_redis, contact_workflow,
    ):
        inline = await make_context(redis=None)
        inline_id = await _seed(inline, contact_workflow)
        await inline.dispatcher.request_validation(inline_id, contact_workflow, tenant_id="acme")
        await inline.dispatcher.request_deploy(inline_id, "acme", contact_workflow)

        durable = await make_context(redis=mock_redis)
        durable_id = await _seed(durable, contact_workflow)
        await durable.dispatcher.request_validation(durable_id, contact_workflow, tenant_id="acme")
        await durable.dispatcher.request_deploy(durable_id, "acme", contact_workflow)
        await durable.queue.drain(JobKind.VALIDATE)
        await durable.queue.drain(JobKind.DEPLOY)

        assert await _steps(inline, inline_id) == await _steps(durable, durable_id)
        status, steps = await _steps(durable, durable_id)
        assert status == "live"
        assert ("success", "deployment_complete") in steps
        assert ("success", "validation_complete") in steps

    @pytest.mark.asyncio
    async def test_chained_deploy_inline(self, make_context, contact_workflow):
        ctx = await make_context(redis=None)
        workflow_id = await _seed(ctx, contact_workflow)

        handle = await ctx.dispatcher.request_validation(
            workflow_id, contact_workflow, tenant_id="acme", chain_deploy=True,
        )

        assert handle.durable is False
        status, steps = await _steps(ctx, workflow_id)
        assert status == "live"
        assert ("running", "deployment_start") in steps
