# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
ORM Models — Table definitions for the workflow pipeline.

Tables:
  - workflows:     Stored workflow definitions + lifecycle status
  - workflow_logs: Pipeline step log (append-only, feeds analytics)
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from flowsmith.storage.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")

WORKFLOW_STATUSES = ("draft", "deploying", "live", "error")
LOG_STATUSES = ("running", "success", "error")


def _utcnow():
    return datetime.now(timezone.utc)


# ── Workflows ───────────────────────────────────────────────

class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    prompt = Column(Text, nullable=True)
    workflow_json = Column(JSONType, nullable=False)
    status = Column(String(32), nullable=False, default="draft")  # draft/deploying/live/error
    last_run_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "name": self.name,
            "description": self.description,
            "prompt": self.prompt,
            "workflowJson": self.workflow_json,
            "status": self.status,
            "lastRunUrl": self.last_run_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Workflow {self.id} status={self.status}>"


# ── Workflow Logs ───────────────────────────────────────────

class WorkflowLog(Base):
    __tablename__ = "workflow_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False)
    run_id = Column(String(128), nullable=False)
    status = Column(String(32), nullable=False)  # running/success/error
    step_name = Column(String(128), nullable=True)
    output = Column(JSONType, nullable=True)
    error = Column(Text, nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_logs_workflow_time", "workflow_id", "executed_at"),
        Index("idx_logs_run", "run_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "runId": self.run_id,
            "status": self.status,
            "stepName": self.step_name,
            "output": self.output,
            "error": self.error,
            "executedAt": self.executed_at.isoformat() if self.executed_at else None,
        }

    def __repr__(self):
        return f"<WorkflowLog {self.run_id}/{self.step_name} {self.status}>"
