# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Job Queue — Asynchronous dispatch of validate and deploy jobs.

Two implementations behind one interface:

  - DurableQueue:  Redis lists. Jobs survive restarts, failed attempts
                   are rescheduled per the kind's RetryPolicy through a
                   delayed sorted set, exhausted jobs land in a failed list.
  - InlineQueue:   degraded mode when Redis is unreachable. enqueue()
                   runs the handler immediately in-process and returns a
                   fabricated handle; no durability, no retries.

Callers depend only on enqueue()/on_event(); a returned JobHandle does
not imply persisted, retryable state (check handle.durable).

The queue is a dispatch mechanism, not a result store: workers persist
their own outcomes to workflow_logs, the queue only emits JobEvents.

Redis layout (prefix = settings.QUEUE_PREFIX):
  {prefix}:{kind}            LIST   ready jobs (LPUSH / BRPOP)
  {prefix}:{kind}:delayed    ZSET   jobs waiting for backoff, score = due ts
  {prefix}:{kind}:failed     LIST   jobs that exhausted their attempts
  {prefix}:job:{job_id}      STRING enqueue dedup marker (SET NX EX)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.kernel.redis_client import ping
from flowsmith.protocols.jobs import Job, JobEvent, JobHandle, JobKind
from flowsmith.resilience.idempotency import content_hash
from flowsmith.resilience.retry import decide, policy_for

logger = logging.getLogger("flowsmith.queue")

JobHandler = Callable[[BaseModel], Awaitable[Optional[Dict[str, Any]]]]
EventListener = Callable[[JobEvent], Union[None, Awaitable[None]]]


class QueueError(Exception):
    """Raised for misuse of the queue (unknown kind, no handler)."""


def job_id_for(
    kind: JobKind,
    data: BaseModel,
    now: Optional[float] = None,
    bucket_seconds: int = 60,
) -> str:
    """
    Caller-supplied idempotent job id.

    Same tenant + workflow + content within one timestamp bucket yields
    the same id, so a re-enqueue of the same logical operation is
    dropped at the queue layer.
    """
    kind = JobKind(kind)
    bucket = int((now if now is not None else time.time()) // max(bucket_seconds, 1))
    tenant = getattr(data, "tenant_id", None) or "-"
    digest = content_hash(getattr(data, "workflow_json", {}))
    return f"{kind.value}_{tenant}_{data.workflow_id}_{digest}_{bucket}"


def _log_event(event: JobEvent) -> None:
    if event.status == "completed":
        logger.info("[queue] %s job %s completed", event.kind.value, event.job_id,
                    extra={"job_id": event.job_id})
    elif event.status == "retrying":
        logger.warning("[queue] %s job %s attempt %d failed, retry scheduled: %s",
                       event.kind.value, event.job_id, event.attempt, event.error,
                       extra={"job_id": event.job_id})
    else:
        logger.error("[queue] %s job %s failed: %s",
                     event.kind.value, event.job_id, event.error,
                     extra={"job_id": event.job_id})


class JobQueue(ABC):
    """Capability shared by the durable and inline queues."""

    def __init__(self) -> None:
        self._handlers: Dict[JobKind, JobHandler] = {}
        self._listeners: List[EventListener] = [_log_event]

    @property
    @abstractmethod
    def is_durable(self) -> bool:
        ...

    def register(self, kind: JobKind, handler: JobHandler) -> None:
        """Bind the worker coroutine that processes jobs of `kind`."""
        self._handlers[JobKind(kind)] = handler

    def on_event(self, listener: EventListener) -> None:
        """Subscribe to completed/retrying/failed events."""
        self._listeners.append(listener)

    @abstractmethod
    async def enqueue(
        self,
        kind: JobKind,
        data: BaseModel,
        job_id: Optional[str] = None,
    ) -> JobHandle:
        ...

    async def start(self) -> None:
        """Start background consumers (no-op by default)."""

    async def stop(self) -> None:
        """Stop background consumers (no-op by default)."""

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        ...

    # ── Internal ────────────────────────────────────────────────

    async def _emit(self, event: JobEvent) -> None:
        pipeline_metrics.inc(f"jobs_{event.status}:{event.kind.value}")
        for listener in self._listeners:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Job event listener failed: %s", e, exc_info=True)

    async def _run_handler(self, job: Job) -> Optional[Dict[str, Any]]:
        handler = self._handlers.get(job.kind)
        if handler is None:
            raise QueueError(f"No handler registered for job kind '{job.kind.value}'")
        return await handler(job.payload())

    def _new_job(self, kind: JobKind, data: BaseModel, job_id: str) -> Job:
        policy = policy_for(kind)
        return Job(
            id=job_id,
            kind=kind,
            data=data.model_dump(mode="json", by_alias=True),
            max_attempts=policy.max_attempts if self.is_durable else 1,
            backoff_ms=policy.backoff_ms if self.is_durable else [],
        )


# ── Durable (Redis) ─────────────────────────────────────────


class DurableQueue(JobQueue):
    """Redis-backed queue with retry/backoff and enqueue dedup."""

    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: str = "flowsmith:queue",
        poll_interval: float = 1.0,
        dedup_ttl: int = 3600,
    ) -> None:
        super().__init__()
        self._redis = redis
        self._prefix = prefix
        self._poll_interval = poll_interval
        self._dedup_ttl = dedup_ttl
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def is_durable(self) -> bool:
        return True

    # ── Keys ────────────────────────────────────────────────────

    def ready_key(self, kind: JobKind) -> str:
        return f"{self._prefix}:{JobKind(kind).value}"

    def delayed_key(self, kind: JobKind) -> str:
        return f"{self.ready_key(kind)}:delayed"

    def failed_key(self, kind: JobKind) -> str:
        return f"{self.ready_key(kind)}:failed"

    def _dedup_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    # ── Produce ─────────────────────────────────────────────────

    async def enqueue(
        self,
        kind: JobKind,
        data: BaseModel,
        job_id: Optional[str] = None,
    ) -> JobHandle:
        kind = JobKind(kind)
        job_id = job_id or str(uuid.uuid4())

        fresh = await self._redis.set(self._dedup_key(job_id), "1", nx=True, ex=self._dedup_ttl)
        if not fresh:
            logger.info("[queue] %s job %s already enqueued, skipping", kind.value, job_id)
            pipeline_metrics.inc(f"jobs_deduplicated:{kind.value}")
            return JobHandle(id=job_id, kind=kind, durable=True, deduplicated=True)

        job = self._new_job(kind, data, job_id)
        try:
            await self._redis.lpush(self.ready_key(kind), job.to_json())
        except (RedisError, OSError):
            # Nothing was queued: release the marker so a retry is not dropped.
            try:
                await self._redis.delete(self._dedup_key(job_id))
            except (RedisError, OSError) as e:
                logger.warning("[queue] could not release dedup marker for %s: %s", job_id, e)
            raise
        pipeline_metrics.inc(f"jobs_enqueued:{kind.value}")
        logger.info("[queue] enqueued %s job %s (max_attempts=%d)",
                    kind.value, job_id, job.max_attempts, extra={"job_id": job_id})
        return JobHandle(id=job_id, kind=kind, durable=True)

    # ── Consume ─────────────────────────────────────────────────

    async def process_next(self, kind: JobKind, block: Optional[float] = None) -> bool:
        """
        Run at most one ready job of `kind`. Returns True if a job ran.

        block: seconds to wait for a job (BRPOP); None = do not wait.
        """
        kind = JobKind(kind)
        await self.promote_due(kind)

        if block:
            popped = await self._redis.brpop(self.ready_key(kind), timeout=block)
            raw = popped[1] if popped else None
        else:
            raw = await self._redis.rpop(self.ready_key(kind))
        if not raw:
            return False

        try:
            job = Job.from_json(raw)
        except ValueError as e:
            logger.error("[queue] dropping malformed %s job: %s", kind.value, e)
            await self._redis.lpush(self.failed_key(kind), raw)
            return True

        await self._execute(job)
        return True

    async def drain(self, kind: JobKind) -> int:
        """Run ready jobs until the list is empty (delayed jobs are left). Returns count."""
        count = 0
        while await self.process_next(kind):
            count += 1
        return count

    async def promote_due(self, kind: JobKind, now: Optional[float] = None) -> int:
        """Move delayed jobs whose backoff has elapsed back to the ready list."""
        now = now if now is not None else time.time()
        due = await self._redis.zrangebyscore(self.delayed_key(kind), "-inf", now)
        moved = 0
        for raw in due:
            # ZREM first: only one consumer wins the promotion.
            if await self._redis.zrem(self.delayed_key(kind), raw):
                await self._redis.lpush(self.ready_key(kind), raw)
                moved += 1
        return moved

    async def _execute(self, job: Job) -> None:
        start = time.time()
        try:
            result = await self._run_handler(job)
        except Exception as e:
            await self._handle_failure(job, e)
            return
        finally:
            pipeline_metrics.observe(f"job_latency:{job.kind.value}", (time.time() - start) * 1000)

        await self._emit(JobEvent(
            kind=job.kind, job_id=job.id, status="completed",
            attempt=job.attempt, result=result,
        ))

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        policy = policy_for(job.kind)
        verdict = decide(job.kind, job.id, job.attempt, error)
        if verdict == "retry" and job.attempt < job.max_attempts:
            delay = policy.next_delay(job.attempt)
            retry = job.model_copy(update={"attempt": job.attempt + 1, "last_error": str(error)})
            await self._redis.zadd(self.delayed_key(job.kind), {retry.to_json(): time.time() + delay})
            await self._emit(JobEvent(
                kind=job.kind, job_id=job.id, status="retrying",
                attempt=job.attempt, error=str(error),
            ))
            return

        dead = job.model_copy(update={"last_error": str(error)})
        await self._redis.lpush(self.failed_key(job.kind), dead.to_json())
        await self._emit(JobEvent(
            kind=job.kind, job_id=job.id, status="failed",
            attempt=job.attempt, error=str(error),
        ))

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for kind in self._handlers:
            self._tasks.append(asyncio.create_task(self._consume(kind), name=f"queue-{kind.value}"))
        logger.info("[queue] consumers started: %s", [k.value for k in self._handlers])

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _consume(self, kind: JobKind) -> None:
        block = max(int(self._poll_interval), 1)
        while self._running:
            try:
                await self.process_next(kind, block=block)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.error("[queue] %s consumer error: %s", kind.value, e)
                await asyncio.sleep(self._poll_interval)

    async def health(self) -> Dict[str, Any]:
        report: Dict[str, Any] = {"backend": "redis", "durable": True}
        try:
            for kind in JobKind:
                report[kind.value] = {
                    "waiting": await self._redis.llen(self.ready_key(kind)),
                    "delayed": await self._redis.zcard(self.delayed_key(kind)),
                    "failed": await self._redis.llen(self.failed_key(kind)),
                }
            report["redis"] = "connected"
        except (RedisError, OSError) as e:
            report["redis"] = "disconnected"
            report["error"] = str(e)
        return report


# ── Inline (degraded) ───────────────────────────────────────


class InlineQueue(JobQueue):
    """
    Runs the job body synchronously inside enqueue().

    Side effects are the same as a durable run; the caller waits for
    them, and a failing job is logged and reported as a failed event
    instead of being retried.
    """

    @property
    def is_durable(self) -> bool:
        return False

    async def enqueue(
        self,
        kind: JobKind,
        data: BaseModel,
        job_id: Optional[str] = None,
    ) -> JobHandle:
        kind = JobKind(kind)
        job_id = f"inline_{job_id or uuid.uuid4().hex}"
        job = self._new_job(kind, data, job_id)
        logger.info("[queue] no durable store, running %s job %s inline", kind.value, job_id)

        start = time.time()
        try:
            result = await self._run_handler(job)
        except Exception as e:
            await self._emit(JobEvent(kind=kind, job_id=job_id, status="failed", error=str(e)))
        else:
            await self._emit(JobEvent(kind=kind, job_id=job_id, status="completed", result=result))
        finally:
            pipeline_metrics.observe(f"job_latency:{kind.value}", (time.time() - start) * 1000)

        return JobHandle(id=job_id, kind=kind, durable=False)

    async def health(self) -> Dict[str, Any]:
        return {
            "backend": "inline",
            "durable": False,
            "redis": "fallback_mode",
        }


# ── Factory ─────────────────────────────────────────────────


async def create_job_queue(
    redis: Optional[aioredis.Redis],
    prefix: str = "flowsmith:queue",
    poll_interval: float = 1.0,
    dedup_ttl: int = 3600,
) -> JobQueue:
    """DurableQueue when Redis answers PING, InlineQueue otherwise."""
    if await ping(redis):
        return DurableQueue(redis, prefix=prefix, poll_interval=poll_interval, dedup_ttl=dedup_ttl)
    logger.warning("[queue] durable store unavailable, falling back to inline execution")
    return InlineQueue()
