# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""Tests for workflow analytics aggregation, insights and Q&A."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from flowsmith.analytics.service import (
    QUERY_FALLBACK_ANSWER,
    WorkflowAnalytics,
    WorkflowAnalyticsService,
    aggregate_logs,
    derive_insights,
)
from flowsmith.runtime.llm_client import LLMClient
from flowsmith.storage.models import WorkflowLog
from flowsmith.storage.repositories import WorkflowLogRepository, WorkflowRepository

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _row(run_id, status, step, seconds, error=None):
    return WorkflowLog(
        workflow_id=1, run_id=run_id, status=status, step_name=step,
        error=error, executed_at=T0 + timedelta(seconds=seconds),
    )


def _sample_rows():
    return [
        _row("r1", "running", "deployment_start", 0),
        _row("r1", "success", "deployment_complete", 4),
        _row("r2", "running", "deployment_start", 10),
        _row("r2", "error", "deployment_failed", 12, error="Builder API deployment failed"),
        _row("r3", "running", "deployment_start", 86400),
        _row("r3", "error", "deployment_error", 86400 + 30, error="timeout"),
        _row("r4", "running", "deployment_start", 86500),
        _row("r4", "error", "deployment_failed", 86502, error="Builder API deployment failed"),
    ]


class TestAggregateLogs:
    def test_empty(self):
        report = aggregate_logs(1, [])
        assert report.total_executions == 0
        assert report.success_rate == 0.0
        assert report.last_executed is None
        assert report.trend == []

    def test_counts_runs_not_rows(self):
        report = aggregate_logs(1, _sample_rows())
        assert report.total_executions == 4
        assert report.success_rate == 0.25
        assert report.error_rate == 0.75
        assert report.average_execution_time_ms == pytest.approx((4 + 2 + 30 + 2) / 4 * 1000)
        assert report.last_executed == T0 + timedelta(seconds=86502)

    def test_top_errors_by_count(self):
        report = aggregate_logs(1, _sample_rows())
        assert [(e.error, e.count) for e in report.top_errors] == [
            ("Builder API deployment failed", 2),
            ("timeout", 1),
        ]
        assert report.top_errors[0].last_occurred == T0 + timedelta(seconds=86502)

    def test_daily_trend(self):
        report = aggregate_logs(1, _sample_rows())
        assert [(t.date, t.executions, t.success_rate) for t in report.trend] == [
            ("2026-03-01", 2, 0.5),
            ("2026-03-02", 2, 0.0),
        ]

    def test_unfinished_run_is_neither(self):
        report = aggregate_logs(1, [_row("r1", "running", "deployment_start", 0)])
        assert report.total_executions == 1
        assert report.success_rate == 0.0
        assert report.error_rate == 0.0

    def test_naive_timestamps_are_utc(self):
        row = _row("r1", "success", "x", 0)
        row.executed_at = row.executed_at.replace(tzinfo=None)
        report = aggregate_logs(1, [row])
        assert report.last_executed == T0

    def test_to_dict_keys(self):
        body = aggregate_logs(1, _sample_rows()).to_dict()
        assert body["totalExecutions"] == 4
        assert body["topErrors"][0]["count"] == 2
        assert body["trend"][0]["date"] == "2026-03-01"


class TestDeriveInsights:
    def test_healthy_workflow(self):
        insights = derive_insights(WorkflowAnalytics(
            workflow_id=1, window_days=30, total_executions=50,
            success_rate=0.98, error_rate=0.02, average_execution_time_ms=2000,
        ))
        assert insights.optimization_suggestions == []
        assert insights.recommendations == []
        assert insights.performance_score == 98
        assert insights.reliability_score == 98

    def test_unhealthy_workflow(self):
        report = aggregate_logs(1, _sample_rows())
        insights = derive_insights(report)
        assert insights.optimization_suggestions == [
            "Consider adding error handling and retry logic to improve success rate",
            "Review and fix common error patterns",
        ]
        assert "Implement better input validation" in insights.recommendations
        assert insights.recommendations[-1] == (
            "Address the most common error: Builder API deployment failed"
        )
        assert insights.reliability_score == 25

    def test_slow_and_busy(self):
        insights = derive_insights(WorkflowAnalytics(
            workflow_id=1, window_days=30, total_executions=1500,
            success_rate=1.0, error_rate=0.0, average_execution_time_ms=150_000,
        ))
        assert "Optimize workflow steps to reduce execution time" in insights.optimization_suggestions
        assert "Consider implementing caching for frequently used data" in insights.recommendations
        assert insights.performance_score == 0


async def _seed(session_factory, contact_workflow, tenant="acme", user="u1"):
    async with session_factory() as db:
        row = await WorkflowRepository(db).create(
            tenant, "Contact", contact_workflow, user_id=user,
        )
        logs = WorkflowLogRepository(db)
        await logs.append(row.id, "r1", "running", "deployment_start")
        await logs.append(row.id, "r1", "success", "deployment_complete")
        await db.commit()
        return row.id


class TestAnalyticsService:
    @pytest.mark.asyncio
    async def test_analyze_window(self, session_factory, contact_workflow):
        workflow_id = await _seed(session_factory, contact_workflow)
        service = WorkflowAnalyticsService(session_factory)

        report = await service.analyze(workflow_id)
        assert report.total_executions == 1
        assert report.success_rate == 1.0

        future = datetime.now(timezone.utc) + timedelta(days=60)
        assert (await service.analyze(workflow_id, now=future)).total_executions == 0

    @pytest.mark.asyncio
    async def test_query_without_model(self, session_factory):
        service = WorkflowAnalyticsService(session_factory, llm=LLMClient(api_key=""))
        assert await service.answer_query("why so slow?") == QUERY_FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_query_provider_error(self, session_factory):
        service = WorkflowAnalyticsService(session_factory, llm=LLMClient(api_key="k"))
        mock_response = MagicMock(status_code=500, code="InternalError", message="x")
        with patch("dashscope.Generation.call", return_value=mock_response):
            assert await service.answer_query("anything") == QUERY_FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_query_with_workflow_context(self, session_factory, contact_workflow):
        workflow_id = await _seed(session_factory, contact_workflow)
        service = WorkflowAnalyticsService(session_factory, llm=LLMClient(api_key="k"))
        mock_response = MagicMock(status_code=200, usage=None)
        mock_response.output.choices = [MagicMock(message=MagicMock(content="It is healthy."))]

        with patch("dashscope.Generation.call", return_value=mock_response) as call:
            answer = await service.answer_query(
                "How is it doing?", workflow_id=workflow_id, tenant_id="acme",
            )

        assert answer == "It is healthy."
        kwargs = call.call_args.kwargs
        user_prompt = kwargs["messages"][1]["content"]
        assert '"totalExecutions": 1' in user_prompt
        assert kwargs["temperature"] == 0.4

    @pytest.mark.asyncio
    async def test_query_context_is_tenant_scoped(self, session_factory, contact_workflow):
        workflow_id = await _seed(session_factory, contact_workflow, tenant="acme")
        service = WorkflowAnalyticsService(session_factory, llm=LLMClient(api_key="k"))
        mock_response = MagicMock(status_code=200, usage=None)
        mock_response.output.choices = [MagicMock(message=MagicMock(content="n/a"))]

        with patch("dashscope.Generation.call", return_value=mock_response) as call:
            await service.answer_query("?", workflow_id=workflow_id, tenant_id="globex")

        assert "Context Data:\n{}" in call.call_args.kwargs["messages"][1]["content"]
