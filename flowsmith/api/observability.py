# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Observability API — Health check, metrics, queue health.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flowsmith.api.deps import get_context
from flowsmith.core.context import AppContext
from flowsmith.core.metrics import pipeline_metrics
from flowsmith.kernel.redis_client import ping

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check(ctx: AppContext = Depends(get_context)):
    """Component status; degraded when Redis is missing."""
    try:
        async with ctx.session_factory() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except (SQLAlchemyError, OSError):
        database = "disconnected"

    redis = "connected" if await ping(ctx.redis) else "fallback_mode"
    return {
        "status": "ok" if database == "connected" and redis == "connected" else "degraded",
        "version": "0.1.0",
        "redis": redis,
        "database": database,
        "queue": "redis" if ctx.queue.is_durable else "inline",
        "generator": type(ctx.generator).__name__,
        "metrics": pipeline_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current pipeline metrics."""
    return pipeline_metrics.snapshot()


@router.get("/api/queue/health")
async def queue_health(ctx: AppContext = Depends(get_context)):
    """Backlog per job kind (ready / delayed / failed)."""
    return await ctx.queue.health()
