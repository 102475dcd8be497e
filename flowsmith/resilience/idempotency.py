# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Idempotency Keyer — Content-addressed dedup for deploy requests.

Deploys are triggered by user action and get double-submitted
(double-click, client retry). Each request is keyed by tenant plus a
hash of the workflow content:

  - Before: is_duplicate(key) / get_result(key)
  - Start:  mark_started(key)            → TTL 1h
  - Finish: mark_completed(key, result)  → TTL 24h

The store is best-effort. When Redis is missing or failing every call
fails open: duplicates are not detected, writes are dropped, and the
pipeline keeps going.

Key format: deploy_{tenant_id}_{sha256(json.dumps(workflow))[:16]}

The hash covers the serialized form. Identical payloads always produce
the same key; logically equal payloads serialized differently (key
order, whitespace) may not. The 16-hex-char truncation keeps 64 bits,
so two different workflows of one tenant collide with probability
about n²/2^65 for n stored keys. Accepted for a dedup window of hours.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger("flowsmith.idempotency")

KEY_PREFIX = "idempotency"
HASH_LENGTH = 16

STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"


def content_hash(workflow_json: Any) -> str:
    """Truncated sha256 of the JSON serialization of workflow_json."""
    if isinstance(workflow_json, (str, bytes)):
        raw = workflow_json if isinstance(workflow_json, bytes) else workflow_json.encode()
    else:
        raw = json.dumps(workflow_json, ensure_ascii=False).encode()
    return hashlib.sha256(raw).hexdigest()[:HASH_LENGTH]


def idempotency_key(tenant_id: str, workflow_json: Any) -> str:
    """Deterministic operation key for deploying workflow_json for tenant_id."""
    return f"deploy_{tenant_id}_{content_hash(workflow_json)}"


class IdempotencyKeyer:
    """Tracks operation lifecycle (not-started/started/completed) in Redis."""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        started_ttl: int = 3600,
        completed_ttl: int = 86400,
    ) -> None:
        self._redis = redis
        self._started_ttl = started_ttl
        self._completed_ttl = completed_ttl

    @property
    def available(self) -> bool:
        return self._redis is not None

    @staticmethod
    def key(tenant_id: str, workflow_json: Any) -> str:
        return idempotency_key(tenant_id, workflow_json)

    @staticmethod
    def _store_key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    # ── Reads ───────────────────────────────────────────────────

    async def is_duplicate(self, key: str) -> bool:
        """True if an operation with this key started or completed recently."""
        if self._redis is None:
            return False
        try:
            return await self._redis.exists(self._store_key(key)) == 1
        except (RedisError, OSError) as e:
            logger.error("Idempotency check failed for %s: %s", key, e)
            return False

    async def get_record(self, key: str) -> Optional[Dict[str, Any]]:
        """Raw {status, timestamp, result?} record, or None."""
        if self._redis is None:
            return None
        try:
            data = await self._redis.get(self._store_key(key))
        except (RedisError, OSError) as e:
            logger.error("Idempotency read failed for %s: %s", key, e)
            return None
        if not data:
            return None
        try:
            return json.loads(data)
        except ValueError:
            logger.warning("Idempotency record %s is not valid JSON", key)
            return None

    async def get_result(self, key: str) -> Optional[Any]:
        """Result of a completed operation, or None if absent/in flight."""
        record = await self.get_record(key)
        if record and record.get("status") == STATUS_COMPLETED:
            return record.get("result")
        return None

    # ── Writes ──────────────────────────────────────────────────

    async def mark_started(self, key: str, ttl: Optional[int] = None) -> None:
        await self._write(
            key,
            {"status": STATUS_STARTED, "timestamp": _now_iso()},
            ttl or self._started_ttl,
        )

    async def mark_completed(self, key: str, result: Any) -> None:
        await self._write(
            key,
            {"status": STATUS_COMPLETED, "result": result, "timestamp": _now_iso()},
            self._completed_ttl,
        )

    async def clear(self, key: str) -> None:
        """Forget a key so the same content can be deployed again."""
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._store_key(key))
        except (RedisError, OSError) as e:
            logger.error("Idempotency clear failed for %s: %s", key, e)

    async def _write(self, key: str, record: Dict[str, Any], ttl: int) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(
                self._store_key(key), ttl, json.dumps(record, ensure_ascii=False, default=str),
            )
            logger.info("Idempotency: %s → %s (ttl=%ds)", key, record["status"], ttl)
        except (RedisError, OSError) as e:
            logger.error("Idempotency write failed for %s: %s", key, e)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
