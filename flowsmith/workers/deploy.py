# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Deploy Worker — Pushes a validated workflow to the builder service.

State machine per job (each status change is committed together with
its log row):

  deploying + running/deployment_start
    → live  + success/deployment_complete   (idempotency marked completed)
    → error + error/deployment_failed       (builder said no; DeploymentFailure)
    → error + error/deployment_error        (timeout / transport; re-raised)

A crash after the builder accepted the workflow but before the "live"
commit leaves the row in deploying with only a start log; the builder
scenario exists but is not recorded. Reconciliation is manual.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.protocols.jobs import DeployJobData
from flowsmith.resilience.idempotency import IdempotencyKeyer
from flowsmith.runtime.builder_client import BuilderClient
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository

logger = logging.getLogger("flowsmith.worker.deploy")


class DeploymentFailure(Exception):
    """The builder rejected the deployment."""


class DeployWorker:
    """Queue handler for deploy jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        builder: BuilderClient,
        keyer: IdempotencyKeyer,
    ) -> None:
        self._session_factory = session_factory
        self._builder = builder
        self._keyer = keyer

    async def process(self, job: DeployJobData) -> Dict[str, Any]:
        log_extra = {
            "workflow_id": job.workflow_id,
            "run_id": job.request_id,
            "tenant_id": job.tenant_id,
        }
        key = job.idempotency_key or self._keyer.key(job.tenant_id, job.workflow_json)
        logger.info("Deploying workflow %s (tenant=%s)", job.workflow_id, job.tenant_id,
                    extra=log_extra)

        start = time.time()
        try:
            await self._transition(job, "deploying", "running", "deployment_start",
                                   output={"message": "Starting workflow deployment"})

            result = await self._builder.deploy(job.workflow_json, job.tenant_id)

            if not result.success:
                await self._transition(job, "error", "error", "deployment_failed",
                                       error=result.error,
                                       output={"message": "Workflow deployment failed"})
                pipeline_metrics.inc("deployments_failed")
                raise DeploymentFailure(result.error or "Deployment failed")

            await self._transition(job, "live", "success", "deployment_complete",
                                   last_run_url=result.view_url,
                                   output={
                                       "message": "Workflow deployed successfully",
                                       "scenarioId": result.scenario_id,
                                       "viewUrl": result.view_url,
                                   })
        except DeploymentFailure:
            raise
        except Exception as e:
            logger.error("Deploy job for workflow %s failed: %s",
                         job.workflow_id, e, exc_info=True, extra=log_extra)
            pipeline_metrics.inc("deployments_errored")
            await self._transition(job, "error", "error", "deployment_error",
                                   error=str(e) or type(e).__name__,
                                   output={"message": "Deployment error occurred"})
            raise
        finally:
            pipeline_metrics.observe("deploy_latency", (time.time() - start) * 1000)

        outcome = {"scenarioId": result.scenario_id, "viewUrl": result.view_url}
        await self._keyer.mark_completed(key, outcome)
        pipeline_metrics.inc("deployments_live")
        logger.info("Workflow %s deployed: %s", job.workflow_id, result.view_url, extra=log_extra)
        return {"success": True, **outcome}

    async def _transition(
        self,
        job: DeployJobData,
        workflow_status: str,
        log_status: str,
        step_name: str,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        last_run_url: Optional[str] = None,
    ) -> None:
        """Status update + log row in one transaction."""
        async with self._session_factory() as db:
            await WorkflowRepository(db).set_status(
                job.workflow_id, workflow_status, last_run_url=last_run_url,
            )
            await WorkflowLogRepository(db).append(
                workflow_id=job.workflow_id,
                run_id=job.request_id,
                status=log_status,
                step_name=step_name,
                output=output,
                error=error,
            )
            await db.commit()
