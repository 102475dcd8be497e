# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Shared test fixtures for all Flowsmith tests.

Redis is fakeredis, the database is in-memory SQLite (aiosqlite), the
builder and the language model are replaced by in-process fakes.
"""

import copy
from typing import Any, Dict, List, Optional

import fakeredis.aioredis
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from flowsmith.core.config import FlowsmithSettings
from flowsmith.core.context import build_context
from flowsmith.core.metrics import pipeline_metrics
from flowsmith.runtime.builder_client import BuilderClient, BuilderResult
from flowsmith.runtime.llm_client import LLMClient
from flowsmith.storage.database import Base, make_session_factory

# Import models so tables are registered
import flowsmith.storage.models  # noqa: F401


CONTACT_WORKFLOW: Dict[str, Any] = {
    "name": "Contact Form Email Workflow",
    "description": "Email the admin when the contact form is submitted",
    "env": {"ADMIN_EMAIL": "admin@company.com"},
    "nodes": [
        {
            "id": "trigger",
            "type": "webhook",
            "action": "receive",
            "inputs": {"method": "POST", "path": "/contact"},
            "outputs": ["data"],
        },
        {
            "id": "validate",
            "type": "transform",
            "action": "validate",
            "inputs": {"data": "{{trigger.data}}"},
            "outputs": ["validated"],
        },
        {
            "id": "send_email",
            "type": "email",
            "action": "send",
            "inputs": {"to": "{{env.ADMIN_EMAIL}}", "subject": "New submission"},
            "outputs": ["sent"],
            "authRef": "smtp_gmail",
        },
    ],
    "edges": [
        {"fromNodeId": "trigger", "fromPort": "data", "toNodeId": "validate", "toPort": "data"},
        {"fromNodeId": "validate", "fromPort": "validated", "toNodeId": "send_email", "toPort": "data"},
    ],
    "triggers": [
        {"type": "webhook", "config": {"path": "/contact", "method": "POST"}},
    ],
}


class FakeBuilder(BuilderClient):
    """Builder that answers from a script of results (or raises)."""

    def __init__(self, results: Optional[List[Any]] = None):
        self.results = list(results or [])
        self.calls: List[Dict[str, Any]] = []

    async def deploy(self, workflow_json, tenant_id):
        self.calls.append({"workflow": workflow_json, "tenant_id": tenant_id})
        outcome = self.results.pop(0) if self.results else BuilderResult(
            success=True,
            scenario_id=f"scenario_{tenant_id}_{len(self.calls)}",
            view_url=f"https://builder.example.com/scenarios/scenario_{tenant_id}_{len(self.calls)}/runs",
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def reset_metrics():
    pipeline_metrics.reset()
    yield


@pytest.fixture
def mock_redis():
    """Provide a FakeRedis async instance."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def contact_workflow() -> Dict[str, Any]:
    return copy.deepcopy(CONTACT_WORKFLOW)


@pytest.fixture
def test_settings() -> FlowsmithSettings:
    return FlowsmithSettings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite://",
        DASHSCOPE_API_KEY="",
        RUN_WORKERS=False,
    )


@pytest.fixture
async def session_factory():
    """In-memory SQLite with all tables; one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield make_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def fake_builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def make_context(test_settings, session_factory, fake_builder):
    """Factory for an initialized AppContext; redis=None means degraded mode."""
    async def _make(redis=None, builder=None, llm=None):
        ctx = build_context(
            test_settings,
            redis=redis,
            session_factory=session_factory,
            builder=builder or fake_builder,
            llm=llm or LLMClient(api_key=""),
        )
        await ctx.init(start_consumers=False)
        return ctx

    return _make
