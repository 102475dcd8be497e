# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Job Payloads — What travels through the validate and deploy queues.

Serialization target is JSON (Redis list entries). The workflow is
carried as its wire dict so a worker sees exactly the content the
idempotency key was derived from.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobKind(str, Enum):
    VALIDATE = "validate"
    DEPLOY = "deploy"


class ValidateJobData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: int = Field(..., alias="workflowId")
    workflow_json: Dict[str, Any] = Field(..., alias="workflowJson")
    request_id: str = Field(..., alias="requestId", min_length=1)
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    chain_deploy: bool = Field(default=False, alias="chainDeploy")


class DeployJobData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: int = Field(..., alias="workflowId")
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    workflow_json: Dict[str, Any] = Field(..., alias="workflowJson")
    request_id: str = Field(..., alias="requestId", min_length=1)
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")


JOB_DATA_TYPES = {
    JobKind.VALIDATE: ValidateJobData,
    JobKind.DEPLOY: DeployJobData,
}


class Job(BaseModel):
    """A queue entry: payload plus queue-assigned bookkeeping."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: JobKind
    data: Dict[str, Any]
    attempt: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=1, ge=1)
    backoff_ms: list[int] = Field(default_factory=list)
    enqueued_at: float = Field(default_factory=time.time)
    last_error: Optional[str] = None

    def payload(self) -> BaseModel:
        """Typed payload for this job's kind."""
        return JOB_DATA_TYPES[self.kind].model_validate(self.data)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Job":
        return cls.model_validate_json(data)


class JobHandle(BaseModel):
    """What enqueue() returns. durable=False means nothing was persisted."""

    id: str
    kind: JobKind
    durable: bool
    deduplicated: bool = False


class JobEvent(BaseModel):
    """Emitted by the queue on completion, retry or final failure."""

    kind: JobKind
    job_id: str
    status: str  # "completed" | "retrying" | "failed"
    attempt: int = 1
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
