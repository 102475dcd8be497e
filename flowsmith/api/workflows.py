# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Workflows API — Generate, store, validate and deploy workflows.

Every definition is run through validate_workflow() before it touches
the database or a queue; a rejected candidate has no side effects.
Rows are committed before their jobs are enqueued, because in degraded
mode the job runs inside enqueue() and writes log rows referencing them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowsmith.api.deps import get_context, get_current_tenant
from flowsmith.api.errors import WorkflowNotFoundError, WorkflowValidationAPIError
from flowsmith.core.context import AppContext
from flowsmith.core.metrics import pipeline_metrics
from flowsmith.core.tenant import TenantContext
from flowsmith.protocols.workflow import WorkflowDefinition, validate_workflow
from flowsmith.storage.models import Workflow
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository

logger = logging.getLogger("flowsmith.api.workflows")

router = APIRouter(prefix="/workflows", tags=["workflows"])


# ── Request Models ──────────────────────────────────────────

class ParseRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)

    @field_validator("prompt")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be empty")
        return v.strip()


class WorkflowWriteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    prompt: Optional[str] = None
    workflow: Dict[str, Any] = Field(..., alias="workflowJson")


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1)
    workflow_id: Optional[int] = Field(default=None, alias="workflowId")


# ── Helpers ─────────────────────────────────────────────────

def _trace_id(request: Request) -> Optional[str]:
    return getattr(request.state, "trace_id", None)


def _validated(candidate: Dict[str, Any], request: Request) -> WorkflowDefinition:
    result = validate_workflow(candidate)
    if not result.success:
        pipeline_metrics.inc("workflows_rejected")
        raise WorkflowValidationAPIError(result.error, trace_id=_trace_id(request))
    return result.workflow


async def _load(
    ctx: AppContext, workflow_id: int, tenant: TenantContext, request: Request,
) -> Workflow:
    async with ctx.session_factory() as db:
        workflow = await WorkflowRepository(db).get_for_tenant(workflow_id, tenant.tenant_id)
    if workflow is None:
        raise WorkflowNotFoundError(workflow_id, trace_id=_trace_id(request))
    return workflow


# ── Generation ──────────────────────────────────────────────

@router.post("/parse")
async def parse_prompt(
    req: ParseRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    """Natural-language prompt → generated workflow (or error + template fallback)."""
    result = await ctx.generator.generate(req.prompt, tenant.tenant_id, tenant.user_id)
    return result.to_dict()


@router.post("/query")
async def query_workflows(
    req: QueryRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    """Free-form question about a workflow (or the user's workflows)."""
    answer = await ctx.analytics.answer_query(
        req.query,
        workflow_id=req.workflow_id,
        user_id=tenant.user_id,
        tenant_id=tenant.tenant_id,
    )
    return {"answer": answer}


# ── CRUD ────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_workflow(
    req: WorkflowWriteRequest,
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    workflow = _validated(req.workflow, request)
    wire = workflow.to_json_dict()

    async with ctx.session_factory() as db:
        row = await WorkflowRepository(db).create(
            tenant_id=tenant.tenant_id,
            user_id=tenant.user_id,
            name=req.name or workflow.name,
            description=req.description or workflow.description,
            prompt=req.prompt,
            workflow_json=wire,
        )
        await db.commit()
        body = row.to_dict()

    pipeline_metrics.inc("workflows_created")
    handle = await ctx.dispatcher.request_validation(row.id, wire, tenant_id=tenant.tenant_id)
    body["validationJobId"] = handle.id
    return body


@router.get("")
async def list_workflows(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    async with ctx.session_factory() as db:
        repo = WorkflowRepository(db)
        if tenant.user_id:
            rows = await repo.list_by_user(tenant.tenant_id, tenant.user_id, limit=limit)
        else:
            rows = await repo.list_by_tenant(tenant.tenant_id, limit=limit, offset=offset)
    return {"workflows": [r.to_dict() for r in rows], "count": len(rows)}


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: int,
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    workflow = await _load(ctx, workflow_id, tenant, request)
    return workflow.to_dict()


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: int,
    req: WorkflowWriteRequest,
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    """
    Replace a stored definition and validate it.

    A workflow that has been deployed before (any status but draft) is
    redeployed through the validate → deploy chain; status is only
    changed by that deploy.
    """
    previous = await _load(ctx, workflow_id, tenant, request)
    workflow = _validated(req.workflow, request)
    wire = workflow.to_json_dict()
    redeploy = previous.status != "draft"

    async with ctx.session_factory() as db:
        repo = WorkflowRepository(db)
        await repo.update_definition(
            workflow_id, wire, name=req.name, description=req.description,
        )
        await db.commit()
        row = await repo.get(workflow_id)
        body = row.to_dict()

    handle = await ctx.dispatcher.request_validation(
        workflow_id, wire, tenant_id=tenant.tenant_id, chain_deploy=redeploy,
    )
    body["validationJobId"] = handle.id
    body["redeploy"] = redeploy
    return body


# ── Pipeline Actions ────────────────────────────────────────

@router.post("/{workflow_id}/validate", status_code=202)
async def validate_stored_workflow(
    workflow_id: int,
    request: Request,
    deploy: bool = Query(False, description="Deploy automatically if validation passes"),
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    workflow = await _load(ctx, workflow_id, tenant, request)
    handle = await ctx.dispatcher.request_validation(
        workflow_id, workflow.workflow_json,
        tenant_id=tenant.tenant_id, chain_deploy=deploy,
    )
    return {"jobId": handle.id, "durable": handle.durable, "deduplicated": handle.deduplicated}


@router.post("/{workflow_id}/deploy", status_code=202)
@router.post("/{workflow_id}/execute", status_code=202)
async def deploy_workflow(
    workflow_id: int,
    request: Request,
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    """
    Enqueue a deploy guarded by the (tenant, content) idempotency key.

    A duplicate answers 200 with duplicate=true (and the prior result if
    the earlier deploy completed) and enqueues nothing.
    """
    workflow = await _load(ctx, workflow_id, tenant, request)
    definition = _validated(workflow.workflow_json, request)

    outcome = await ctx.dispatcher.request_deploy(
        workflow_id,
        tenant.tenant_id,
        definition.to_json_dict(),
        current_status=workflow.status,
    )
    if outcome.duplicate:
        return JSONResponse(status_code=200, content=outcome.to_dict())
    return outcome.to_dict()


# ── Logs & Analytics ────────────────────────────────────────

@router.get("/{workflow_id}/logs")
async def get_workflow_logs(
    workflow_id: int,
    request: Request,
    run_id: Optional[str] = Query(None, alias="runId"),
    limit: int = Query(100, ge=1, le=1000),
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    await _load(ctx, workflow_id, tenant, request)
    async with ctx.session_factory() as db:
        repo = WorkflowLogRepository(db)
        if run_id:
            rows = [r for r in await repo.list_by_run(run_id) if r.workflow_id == workflow_id]
        else:
            rows = await repo.list_by_workflow(workflow_id, limit=limit)
    return {"logs": [r.to_dict() for r in rows], "count": len(rows)}


@router.get("/{workflow_id}/analytics")
async def get_workflow_analytics(
    workflow_id: int,
    request: Request,
    days: Optional[int] = Query(None, ge=1, le=365),
    tenant: TenantContext = Depends(get_current_tenant),
    ctx: AppContext = Depends(get_context),
):
    await _load(ctx, workflow_id, tenant, request)
    analytics = await ctx.analytics.analyze(
        workflow_id, window_days=days or ctx.settings.ANALYTICS_WINDOW_DAYS,
    )
    return {
        "analytics": analytics.to_dict(),
        "insights": ctx.analytics.insights(analytics).to_dict(),
    }
