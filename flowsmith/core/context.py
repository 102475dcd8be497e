# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Application Context — Explicitly wired pipeline components.

Built once per process (API server or worker runner) and handed to the
FastAPI app through app.state; tests build their own with fakes.

init() decides the degraded variants once:
  - Redis unreachable      → fail-open idempotency, InlineQueue
  - no DASHSCOPE_API_KEY   → TemplateOnlyGenerator, canned Q&A answer
  - no BUILDER_BASE_URL    → SimulatedBuilderClient
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowsmith.analytics.service import WorkflowAnalyticsService
from flowsmith.core.config import FlowsmithSettings, settings as default_settings
from flowsmith.core.metrics import pipeline_metrics
from flowsmith.generator.workflow_generator import Generator, create_generator
from flowsmith.kernel.dispatcher import PipelineDispatcher
from flowsmith.kernel.queue import JobQueue, create_job_queue
from flowsmith.kernel.redis_client import close_redis, connect_redis
from flowsmith.protocols.jobs import JobKind
from flowsmith.resilience.idempotency import IdempotencyKeyer
from flowsmith.runtime.builder_client import BuilderClient, create_builder_client
from flowsmith.runtime.llm_client import LLMClient
from flowsmith.storage.database import get_session_factory
from flowsmith.workers.deploy import DeployWorker
from flowsmith.workers.validate import ValidationWorker

logger = logging.getLogger("flowsmith.context")

# Marker: no client injected, connect to settings.REDIS_URL in init()
CONNECT = object()


class AppContext:
    """Holds all runtime references. Created at startup, used by handlers and workers."""

    def __init__(
        self,
        settings: FlowsmithSettings,
        session_factory: async_sessionmaker[AsyncSession],
        builder: BuilderClient,
        llm: LLMClient,
        redis: Any = CONNECT,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.builder = builder
        self.llm = llm
        self._redis_arg = redis
        self._owns_redis = redis is CONNECT

        self.redis: Optional[aioredis.Redis] = None
        self.keyer: Optional[IdempotencyKeyer] = None
        self.queue: Optional[JobQueue] = None
        self.generator: Optional[Generator] = None
        self.dispatcher: Optional[PipelineDispatcher] = None
        self.validation_worker: Optional[ValidationWorker] = None
        self.deploy_worker: Optional[DeployWorker] = None
        self.analytics: Optional[WorkflowAnalyticsService] = None
        self._started = False

    @property
    def degraded(self) -> bool:
        return self.redis is None

    async def init(self, start_consumers: Optional[bool] = None) -> "AppContext":
        s = self.settings
        if self._owns_redis:
            self.redis = await connect_redis(s.REDIS_URL)
        else:
            self.redis = self._redis_arg

        self.keyer = IdempotencyKeyer(
            self.redis,
            started_ttl=s.IDEMPOTENCY_STARTED_TTL,
            completed_ttl=s.IDEMPOTENCY_COMPLETED_TTL,
        )
        self.queue = await create_job_queue(
            self.redis,
            prefix=s.QUEUE_PREFIX,
            poll_interval=s.QUEUE_POLL_INTERVAL,
            dedup_ttl=s.JOB_DEDUP_TTL,
        )
        self.generator = create_generator(self.llm)
        self.dispatcher = PipelineDispatcher(
            self.queue, self.keyer, bucket_seconds=s.JOB_BUCKET_SECONDS,
        )
        self.validation_worker = ValidationWorker(
            self.session_factory, on_passed=self.dispatcher.on_validation_passed,
        )
        self.deploy_worker = DeployWorker(self.session_factory, self.builder, self.keyer)
        self.analytics = WorkflowAnalyticsService(self.session_factory, llm=self.llm)

        self.queue.register(JobKind.VALIDATE, self.validation_worker.process)
        self.queue.register(JobKind.DEPLOY, self.deploy_worker.process)

        pipeline_metrics.set_gauge("queue_durable", 1.0 if self.queue.is_durable else 0.0)
        if start_consumers if start_consumers is not None else s.RUN_WORKERS:
            await self.queue.start()
            self._started = True

        logger.info(
            "Context ready: queue=%s, generator=%s, builder=%s",
            "redis" if self.queue.is_durable else "inline",
            type(self.generator).__name__,
            type(self.builder).__name__,
        )
        return self

    async def shutdown(self) -> None:
        if self.queue is not None and self._started:
            await self.queue.stop()
            self._started = False
        if self._owns_redis:
            await close_redis(self.redis)
        self.redis = None


def build_context(
    settings: Optional[FlowsmithSettings] = None,
    redis: Any = CONNECT,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    builder: Optional[BuilderClient] = None,
    llm: Optional[LLMClient] = None,
) -> AppContext:
    """
    Assemble an AppContext from settings, overriding any collaborator.

    redis=None forces degraded mode; leaving it out connects to REDIS_URL.
    """
    s = settings or default_settings
    return AppContext(
        settings=s,
        session_factory=session_factory or get_session_factory(),
        builder=builder or create_builder_client(s),
        llm=llm or LLMClient(s.DASHSCOPE_API_KEY, model=s.DASHSCOPE_MODEL, timeout=s.LLM_TIMEOUT),
        redis=redis,
    )
