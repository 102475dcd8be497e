# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Validation Worker — Static analysis of a stored workflow.

analyze_workflow() is pure: schema → edges → auth → triggers →
reachability → per-node checks, collecting every issue after the schema
gate. ValidationWorker wraps it with the workflow_logs bookkeeping:

  running/validation_start
  → success/validation_complete   (annotations)
  → error/validation_failed       (issues joined by "; ")
  → error/validation_error        (unexpected exception, then re-raised)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.protocols.jobs import ValidateJobData
from flowsmith.protocols.workflow import (
    AUTH_REQUIRED_TYPES,
    WorkflowDefinition,
    validate_workflow,
)
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository

logger = logging.getLogger("flowsmith.worker.validate")

PassedHook = Callable[[ValidateJobData, Optional[str]], Awaitable[Any]]


@dataclass
class NodeAnnotation:
    node_id: str
    type: str  # success / warning / error
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"nodeId": self.node_id, "type": self.type, "message": self.message}


@dataclass
class AnalysisReport:
    success: bool
    issues: List[str] = field(default_factory=list)
    annotations: List[NodeAnnotation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "issues": list(self.issues),
            "annotations": [a.to_dict() for a in self.annotations],
        }


# ── Analysis ────────────────────────────────────────────────


def analyze_workflow(candidate: Any) -> AnalysisReport:
    """Run every static check over a workflow candidate (dict, JSON or model)."""
    result = validate_workflow(candidate)
    if not result.success:
        return AnalysisReport(
            success=False,
            issues=[f"Schema validation failed: {result.error}"],
        )
    workflow = result.workflow
    issues: List[str] = []
    annotations: List[NodeAnnotation] = []

    node_ids = set(workflow.node_ids)
    for edge in workflow.edges:
        for endpoint in (edge.from_node_id, edge.to_node_id):
            if endpoint not in node_ids:
                issues.append(f"Edge references non-existent node: {endpoint}")

    for node in workflow.nodes:
        if node.type in AUTH_REQUIRED_TYPES and not node.auth_ref:
            issues.append(f"Node {node.id} ({node.type}) requires authRef for authentication")
            annotations.append(NodeAnnotation(node.id, "warning", "Missing authentication reference"))

    for trigger in workflow.triggers:
        if trigger.type == "webhook" and not trigger.config.get("path"):
            issues.append("Webhook trigger missing path configuration")
        if trigger.type == "schedule" and not trigger.config.get("cron"):
            issues.append("Schedule trigger missing cron configuration")

    reachable = reachable_nodes(workflow)
    for node in workflow.nodes:
        if node.id not in reachable:
            issues.append(f"Node {node.id} is unreachable from triggers")
            annotations.append(NodeAnnotation(node.id, "error", "Unreachable node"))

    for node in workflow.nodes:
        if node.type == "http" and not node.inputs.get("url"):
            issues.append(f"Node {node.id}: HTTP action requires URL")
            annotations.append(NodeAnnotation(node.id, "error", "HTTP node missing URL"))
        elif node.type == "email" and not node.inputs.get("to"):
            issues.append(f"Node {node.id}: Email action requires recipient")
            annotations.append(NodeAnnotation(node.id, "error", "Email node missing recipient"))
        else:
            annotations.append(NodeAnnotation(node.id, "success", "Node validation passed"))

    return AnalysisReport(success=not issues, issues=issues, annotations=annotations)


def reachable_nodes(workflow: WorkflowDefinition) -> set[str]:
    """
    Node ids reachable from the entry points.

    Entry points are the webhook-typed nodes plus the first node, which
    receives the declared triggers. The first node is skipped only when
    every trigger is a webhook already served by a webhook node.
    """
    roots = [n.id for n in workflow.nodes if n.type == "webhook"]
    if not roots or any(t.type != "webhook" for t in workflow.triggers):
        roots.append(workflow.nodes[0].id)

    adjacency: Dict[str, List[str]] = {}
    for edge in workflow.edges:
        adjacency.setdefault(edge.from_node_id, []).append(edge.to_node_id)

    seen: set[str] = set()
    stack = list(roots)
    while stack:
        node_id = stack.pop()
        if node_id in seen:
            continue
        seen.add(node_id)
        stack.extend(adjacency.get(node_id, ()))
    return seen


# ── Worker ──────────────────────────────────────────────────


class ValidationWorker:
    """Queue handler for validate jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        on_passed: Optional[PassedHook] = None,
    ) -> None:
        self._session_factory = session_factory
        self._on_passed = on_passed

    async def process(self, job: ValidateJobData) -> Dict[str, Any]:
        log_extra = {"workflow_id": job.workflow_id, "run_id": job.request_id}
        logger.info("Validating workflow %s", job.workflow_id, extra=log_extra)

        try:
            await self._log(job, "running", "validation_start",
                            output={"message": "Starting workflow validation"})

            report = analyze_workflow(job.workflow_json)
            annotations = [a.to_dict() for a in report.annotations]

            if report.success:
                await self._log(job, "success", "validation_complete", output={
                    "message": "Workflow validation passed",
                    "annotations": annotations,
                })
                pipeline_metrics.inc("validations_passed")
                logger.info("Workflow %s validation passed", job.workflow_id, extra=log_extra)
            else:
                await self._log(job, "error", "validation_failed",
                                error="; ".join(report.issues),
                                output={
                                    "message": "Workflow validation failed",
                                    "issues": report.issues,
                                    "annotations": annotations,
                                })
                pipeline_metrics.inc("validations_failed")
                logger.info("Workflow %s validation failed: %s",
                            job.workflow_id, report.issues, extra=log_extra)
        except Exception as e:
            logger.error("Validation job for workflow %s failed: %s",
                         job.workflow_id, e, exc_info=True, extra=log_extra)
            await self._log(job, "error", "validation_error", error=str(e),
                            output={"message": "Validation error occurred"})
            raise

        if report.success and job.chain_deploy and job.tenant_id and self._on_passed:
            await self._on_passed(job, await self._current_status(job.workflow_id))
        return report.to_dict()

    async def _current_status(self, workflow_id: int) -> Optional[str]:
        async with self._session_factory() as db:
            row = await WorkflowRepository(db).get(workflow_id)
            return row.status if row is not None else None

    async def _log(
        self,
        job: ValidateJobData,
        status: str,
        step_name: str,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as db:
            await WorkflowLogRepository(db).append(
                workflow_id=job.workflow_id,
                run_id=job.request_id,
                status=status,
                step_name=step_name,
                output=output,
                error=error,
            )
            await db.commit()
