# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Pipeline Dispatcher — Turns user actions into queue jobs.

Shared by the HTTP API and the validation worker (validate → deploy
chaining), so both paths apply the same rules:

  - request_validation(): enqueue a validate job, id derived from
    tenant + workflow + content + time bucket.
  - request_deploy(): idempotency check first. A completed record
    returns the prior result; a started record is reported as a
    duplicate unless the workflow has since landed in "error", in which
    case the key is cleared and the deploy is re-triggered.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.kernel.queue import JobQueue, job_id_for
from flowsmith.protocols.jobs import DeployJobData, JobHandle, JobKind, ValidateJobData
from flowsmith.resilience.idempotency import STATUS_COMPLETED, IdempotencyKeyer

logger = logging.getLogger("flowsmith.dispatcher")


@dataclass
class DeployRequest:
    """What the API answers for a deploy request."""

    request_id: str
    idempotency_key: str
    job_id: Optional[str] = None
    durable: bool = False
    duplicate: bool = False
    result: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "requestId": self.request_id,
            "jobId": self.job_id,
            "idempotencyKey": self.idempotency_key,
            "durable": self.durable,
        }
        if self.duplicate:
            body["duplicate"] = True
            body["result"] = self.result
        return body


def new_request_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class PipelineDispatcher:
    def __init__(
        self,
        queue: JobQueue,
        keyer: IdempotencyKeyer,
        bucket_seconds: int = 60,
    ) -> None:
        self._queue = queue
        self._keyer = keyer
        self._bucket_seconds = bucket_seconds

    @property
    def queue(self) -> JobQueue:
        return self._queue

    async def request_validation(
        self,
        workflow_id: int,
        workflow_json: Dict[str, Any],
        tenant_id: Optional[str] = None,
        chain_deploy: bool = False,
    ) -> JobHandle:
        data = ValidateJobData(
            workflow_id=workflow_id,
            workflow_json=workflow_json,
            request_id=new_request_id("validate"),
            tenant_id=tenant_id,
            chain_deploy=chain_deploy,
        )
        job_id = job_id_for(JobKind.VALIDATE, data, bucket_seconds=self._bucket_seconds)
        if chain_deploy:
            job_id = f"{job_id}_chain"
        handle = await self._queue.enqueue(JobKind.VALIDATE, data, job_id=job_id)
        pipeline_metrics.inc("validations_requested")
        return handle

    async def request_deploy(
        self,
        workflow_id: int,
        tenant_id: str,
        workflow_json: Dict[str, Any],
        current_status: Optional[str] = None,
    ) -> DeployRequest:
        key = self._keyer.key(tenant_id, workflow_json)
        request_id = new_request_id("deploy")
        retrigger = False

        record = await self._keyer.get_record(key)
        if record:
            if record.get("status") == STATUS_COMPLETED:
                logger.info("Deploy %s already completed, returning prior result", key,
                            extra={"workflow_id": workflow_id, "tenant_id": tenant_id})
                pipeline_metrics.inc("deployments_duplicate")
                return DeployRequest(
                    request_id=request_id,
                    idempotency_key=key,
                    duplicate=True,
                    result=record.get("result"),
                )
            if current_status != "error":
                logger.info("Deploy %s already in progress", key,
                            extra={"workflow_id": workflow_id, "tenant_id": tenant_id})
                pipeline_metrics.inc("deployments_duplicate")
                return DeployRequest(request_id=request_id, idempotency_key=key, duplicate=True)
            logger.info("Deploy %s previously failed, re-triggering", key,
                        extra={"workflow_id": workflow_id, "tenant_id": tenant_id})
            await self._keyer.clear(key)
            retrigger = True

        await self._keyer.mark_started(key)

        data = DeployJobData(
            workflow_id=workflow_id,
            tenant_id=tenant_id,
            workflow_json=workflow_json,
            request_id=request_id,
            idempotency_key=key,
        )
        job_id = job_id_for(JobKind.DEPLOY, data, bucket_seconds=self._bucket_seconds)
        if retrigger:
            job_id = f"{job_id}_{uuid.uuid4().hex[:8]}"
        try:
            handle = await self._queue.enqueue(JobKind.DEPLOY, data, job_id=job_id)
        except Exception:
            # No job carries this key; a later request must be able to deploy.
            await self._keyer.clear(key)
            raise
        pipeline_metrics.inc("deployments_requested")
        return DeployRequest(
            request_id=request_id,
            idempotency_key=key,
            job_id=handle.id,
            durable=handle.durable,
        )

    async def on_validation_passed(
        self,
        job: ValidateJobData,
        current_status: Optional[str] = None,
    ) -> DeployRequest:
        """Hook for ValidationWorker: chain a deploy after a passing validation."""
        return await self.request_deploy(
            job.workflow_id, job.tenant_id, job.workflow_json,
            current_status=current_status,
        )
