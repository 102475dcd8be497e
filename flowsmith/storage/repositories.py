# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Repository Layer — Typed access to the workflow tables.

Each repository takes an AsyncSession; callers own the transaction
(commit/rollback), so a status change and its log row can be written
atomically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from flowsmith.storage.models import (
    LOG_STATUSES,
    WORKFLOW_STATUSES,
    Workflow,
    WorkflowLog,
)


# ── Workflow Repository ─────────────────────────────────────

class WorkflowRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        tenant_id: str,
        name: str,
        workflow_json: Dict[str, Any],
        user_id: Optional[str] = None,
        description: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Workflow:
        """Insert a new workflow in draft status."""
        workflow = Workflow(
            tenant_id=tenant_id,
            user_id=user_id,
            name=name,
            description=description,
            prompt=prompt,
            workflow_json=workflow_json,
            status="draft",
        )
        self.db.add(workflow)
        await self.db.flush()
        return workflow

    async def get(self, workflow_id: int) -> Optional[Workflow]:
        result = await self.db.execute(
            select(Workflow).where(Workflow.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def get_for_tenant(self, workflow_id: int, tenant_id: str) -> Optional[Workflow]:
        """Get a workflow only if it belongs to the tenant."""
        result = await self.db.execute(
            select(Workflow).where(
                Workflow.id == workflow_id,
                Workflow.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_tenant(
        self, tenant_id: str, limit: int = 50, offset: int = 0
    ) -> List[Workflow]:
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.tenant_id == tenant_id)
            .order_by(Workflow.created_at.desc(), Workflow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_by_user(
        self, tenant_id: str, user_id: str, limit: int = 50
    ) -> List[Workflow]:
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.tenant_id == tenant_id, Workflow.user_id == user_id)
            .order_by(Workflow.created_at.desc(), Workflow.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_definition(
        self,
        workflow_id: int,
        workflow_json: Dict[str, Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """Replace the stored definition. Status is left to the deploy pipeline."""
        values: Dict[str, Any] = {
            "workflow_json": workflow_json,
            "updated_at": datetime.now(timezone.utc),
        }
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description
        await self.db.execute(
            update(Workflow).where(Workflow.id == workflow_id).values(**values)
        )

    async def set_status(
        self,
        workflow_id: int,
        status: str,
        last_run_url: Optional[str] = None,
    ) -> None:
        """Move a workflow to a lifecycle status (draft/deploying/live/error)."""
        if status not in WORKFLOW_STATUSES:
            raise ValueError(f"Unknown workflow status: {status}")
        values: Dict[str, Any] = {
            "status": status,
            "updated_at": datetime.now(timezone.utc),
        }
        if last_run_url is not None:
            values["last_run_url"] = last_run_url
        await self.db.execute(
            update(Workflow).where(Workflow.id == workflow_id).values(**values)
        )


# ── Log Repository (append-only) ────────────────────────────

class WorkflowLogRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        workflow_id: int,
        run_id: str,
        status: str,
        step_name: str,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> WorkflowLog:
        """Append a step record. Rows are never updated or deleted."""
        if status not in LOG_STATUSES:
            raise ValueError(f"Unknown log status: {status}")
        row = WorkflowLog(
            workflow_id=workflow_id,
            run_id=run_id,
            status=status,
            step_name=step_name,
            output=output,
            error=error,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def list_by_workflow(
        self, workflow_id: int, limit: int = 100
    ) -> List[WorkflowLog]:
        """Newest first."""
        result = await self.db.execute(
            select(WorkflowLog)
            .where(WorkflowLog.workflow_id == workflow_id)
            .order_by(WorkflowLog.executed_at.desc(), WorkflowLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_run(self, run_id: str) -> List[WorkflowLog]:
        """All steps of one run, in execution order."""
        result = await self.db.execute(
            select(WorkflowLog)
            .where(WorkflowLog.run_id == run_id)
            .order_by(WorkflowLog.executed_at, WorkflowLog.id)
        )
        return list(result.scalars().all())

    async def list_since(self, workflow_id: int, since: datetime) -> List[WorkflowLog]:
        """Rows at or after `since`, oldest first (analytics window)."""
        result = await self.db.execute(
            select(WorkflowLog)
            .where(
                WorkflowLog.workflow_id == workflow_id,
                WorkflowLog.executed_at >= since,
            )
            .order_by(WorkflowLog.executed_at, WorkflowLog.id)
        )
        return list(result.scalars().all())
