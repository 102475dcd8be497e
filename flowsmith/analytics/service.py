# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Workflow Analytics — Read-only aggregation over workflow_logs.

An execution is one run_id: its outcome is the status of its last log
row (running rows of an unfinished run count as neither success nor
error), its duration the span between its first and last row.

Nothing in this module writes to the database.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowsmith.runtime.llm_client import LLMClient, LLMError
from flowsmith.storage.models import WorkflowLog
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository

logger = logging.getLogger("flowsmith.analytics")

TOP_ERRORS = 5

QUERY_FALLBACK_ANSWER = (
    "I apologize, but I'm unable to process that query at the moment. "
    "Please try again or rephrase your question."
)

ANALYST_SYSTEM_PROMPT = (
    "You are an AI workflow analyst. Provide helpful insights and "
    "recommendations based on workflow data."
)


@dataclass
class ErrorSummary:
    error: str
    count: int
    last_occurred: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "count": self.count,
            "lastOccurred": self.last_occurred.isoformat() if self.last_occurred else None,
        }


@dataclass
class TrendBucket:
    date: str
    executions: int
    success_rate: float
    avg_time_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "executions": self.executions,
            "successRate": self.success_rate,
            "avgTimeMs": self.avg_time_ms,
        }


@dataclass
class WorkflowAnalytics:
    workflow_id: int
    window_days: int
    total_executions: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0
    average_execution_time_ms: float = 0.0
    last_executed: Optional[datetime] = None
    top_errors: List[ErrorSummary] = field(default_factory=list)
    trend: List[TrendBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "windowDays": self.window_days,
            "totalExecutions": self.total_executions,
            "successRate": self.success_rate,
            "errorRate": self.error_rate,
            "averageExecutionTimeMs": self.average_execution_time_ms,
            "lastExecuted": self.last_executed.isoformat() if self.last_executed else None,
            "topErrors": [e.to_dict() for e in self.top_errors],
            "trend": [t.to_dict() for t in self.trend],
        }


@dataclass
class WorkflowInsights:
    optimization_suggestions: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    performance_score: int = 100
    reliability_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "optimizationSuggestions": self.optimization_suggestions,
            "recommendations": self.recommendations,
            "performanceScore": self.performance_score,
            "reliabilityScore": self.reliability_score,
        }


# ── Aggregation (pure) ──────────────────────────────────────


@dataclass
class _Run:
    rows: List[WorkflowLog]

    @property
    def started(self) -> datetime:
        return _aware(self.rows[0].executed_at)

    @property
    def outcome(self) -> str:
        return self.rows[-1].status

    @property
    def duration_ms(self) -> float:
        span = _aware(self.rows[-1].executed_at) - _aware(self.rows[0].executed_at)
        return span.total_seconds() * 1000


def _aware(ts: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is stored in UTC.
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


def _mean(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def aggregate_logs(
    workflow_id: int,
    rows: List[WorkflowLog],
    window_days: int = 30,
) -> WorkflowAnalytics:
    """Build WorkflowAnalytics from log rows ordered by executed_at."""
    runs: "OrderedDict[str, _Run]" = OrderedDict()
    for row in rows:
        runs.setdefault(row.run_id, _Run(rows=[])).rows.append(row)

    report = WorkflowAnalytics(workflow_id=workflow_id, window_days=window_days)
    if not runs:
        return report

    all_runs = list(runs.values())
    successes = sum(1 for r in all_runs if r.outcome == "success")
    errors = sum(1 for r in all_runs if r.outcome == "error")

    report.total_executions = len(all_runs)
    report.success_rate = _rate(successes, len(all_runs))
    report.error_rate = _rate(errors, len(all_runs))
    report.average_execution_time_ms = _mean([r.duration_ms for r in all_runs])
    report.last_executed = max(_aware(row.executed_at) for row in rows)

    summaries: Dict[str, ErrorSummary] = {}
    for row in rows:
        if row.status != "error" or not row.error:
            continue
        summary = summaries.setdefault(row.error, ErrorSummary(error=row.error, count=0))
        summary.count += 1
        ts = _aware(row.executed_at)
        if summary.last_occurred is None or ts > summary.last_occurred:
            summary.last_occurred = ts
    report.top_errors = sorted(
        summaries.values(),
        key=lambda s: (-s.count, -(s.last_occurred.timestamp() if s.last_occurred else 0)),
    )[:TOP_ERRORS]

    by_day: Dict[str, List[_Run]] = {}
    for run in all_runs:
        by_day.setdefault(run.started.date().isoformat(), []).append(run)
    report.trend = [
        TrendBucket(
            date=day,
            executions=len(day_runs),
            success_rate=_rate(sum(1 for r in day_runs if r.outcome == "success"), len(day_runs)),
            avg_time_ms=_mean([r.duration_ms for r in day_runs]),
        )
        for day, day_runs in sorted(by_day.items())
    ]
    return report


def derive_insights(analytics: WorkflowAnalytics) -> WorkflowInsights:
    """Rule-based suggestions and 0-100 scores."""
    insights = WorkflowInsights()
    success_pct = analytics.success_rate * 100
    error_pct = analytics.error_rate * 100
    avg_seconds = analytics.average_execution_time_ms / 1000

    if success_pct < 90:
        insights.optimization_suggestions.append(
            "Consider adding error handling and retry logic to improve success rate"
        )
    if avg_seconds > 30:
        insights.optimization_suggestions.append(
            "Optimize workflow steps to reduce execution time"
        )
    if error_pct > 10:
        insights.optimization_suggestions.append("Review and fix common error patterns")
        insights.recommendations.append("Implement better input validation")
    if analytics.total_executions > 1000:
        insights.recommendations.append(
            "Consider implementing caching for frequently used data"
        )
    if analytics.top_errors:
        insights.recommendations.append(
            f"Address the most common error: {analytics.top_errors[0].error}"
        )

    insights.performance_score = round(min(100.0, max(0.0, 100 - avg_seconds)))
    insights.reliability_score = round(success_pct)
    return insights


# ── Service ─────────────────────────────────────────────────


class WorkflowAnalyticsService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm: Optional[LLMClient] = None,
    ) -> None:
        self._session_factory = session_factory
        self._llm = llm

    async def analyze(
        self,
        workflow_id: int,
        window_days: int = 30,
        now: Optional[datetime] = None,
    ) -> WorkflowAnalytics:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=window_days)
        async with self._session_factory() as db:
            rows = await WorkflowLogRepository(db).list_since(workflow_id, since)
        rows = [r for r in rows if _aware(r.executed_at) <= now]
        return aggregate_logs(workflow_id, rows, window_days=window_days)

    def insights(self, analytics: WorkflowAnalytics) -> WorkflowInsights:
        return derive_insights(analytics)

    async def answer_query(
        self,
        query: str,
        workflow_id: Optional[int] = None,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        """Prose answer from the model, or the fixed apology on any failure."""
        if self._llm is None or not self._llm.is_configured:
            return QUERY_FALLBACK_ANSWER
        try:
            context = await self._build_context(workflow_id, user_id, tenant_id)
            prompt = (
                "Answer this workflow-related question using the provided context data:\n\n"
                f'Question: "{query}"\n\n'
                f"Context Data:\n{json.dumps(context, indent=2, ensure_ascii=False, default=str)}\n\n"
                "Provide a helpful, specific answer based on the actual data. If asking about "
                "performance, include specific metrics. If asking about optimization, provide "
                "actionable recommendations."
            )
            completion = await self._llm.complete(ANALYST_SYSTEM_PROMPT, prompt, temperature=0.4)
            return completion.content
        except LLMError as e:
            logger.warning("Workflow query failed: %s", e)
            return QUERY_FALLBACK_ANSWER

    async def _build_context(
        self,
        workflow_id: Optional[int],
        user_id: Optional[str],
        tenant_id: Optional[str],
    ) -> Dict[str, Any]:
        async with self._session_factory() as db:
            repo = WorkflowRepository(db)
            if workflow_id is not None:
                if tenant_id:
                    workflow = await repo.get_for_tenant(workflow_id, tenant_id)
                else:
                    workflow = await repo.get(workflow_id)
                if workflow is None:
                    return {}
                workflow_dict = workflow.to_dict()
            elif user_id and tenant_id:
                workflows = await repo.list_by_user(tenant_id, user_id, limit=10)
                return {"userWorkflows": [w.to_dict() for w in workflows]}
            else:
                return {}

        analytics = await self.analyze(workflow_id)
        return {
            "workflow": workflow_dict,
            "analytics": analytics.to_dict(),
            "insights": derive_insights(analytics).to_dict(),
        }
