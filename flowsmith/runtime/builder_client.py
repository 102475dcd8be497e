# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Builder Client — Materializes a workflow on the external automation builder.

Contract: deploy(workflow_json, tenant_id) returns a BuilderResult
(success + scenario id + view URL, or failure + error). Transport
problems raise; a call exceeding the timeout raises BuilderTimeout.

Two implementations:
  - HttpBuilderClient:      real builder API over httpx.
  - SimulatedBuilderClient: 2-5s latency and ~10% failures, used when
                            no BUILDER_BASE_URL is configured.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("flowsmith.builder")


class BuilderTimeout(Exception):
    """The builder did not answer within the configured timeout."""


@dataclass
class BuilderResult:
    success: bool
    scenario_id: Optional[str] = None
    view_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BuilderClient(ABC):
    @abstractmethod
    async def deploy(self, workflow_json: Dict[str, Any], tenant_id: str) -> BuilderResult:
        ...


class HttpBuilderClient(BuilderClient):
    """POSTs the workflow to {base_url}/scenarios."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    async def deploy(self, workflow_json: Dict[str, Any], tenant_id: str) -> BuilderResult:
        headers = {"X-Tenant-Id": tenant_id}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        logger.info("Builder deploy: %s/scenarios (tenant=%s)", self._base_url, tenant_id)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/scenarios",
                    json={"tenantId": tenant_id, "workflow": workflow_json, "activate": True},
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise BuilderTimeout(f"Builder call timed out after {self._timeout:.0f}s") from e

        if resp.status_code >= 400:
            return BuilderResult(
                success=False,
                error=f"Builder API returned {resp.status_code}: {resp.text[:200]}",
            )

        body = resp.json()
        scenario_id = body.get("scenarioId") or body.get("id")
        if not scenario_id:
            return BuilderResult(success=False, error="Builder API response missing scenarioId")
        return BuilderResult(
            success=True,
            scenario_id=str(scenario_id),
            view_url=body.get("viewUrl"),
        )


class SimulatedBuilderClient(BuilderClient):
    """Stand-in builder with realistic latency and a non-zero failure rate."""

    VIEW_URL = "https://builder.example.com/scenarios/{scenario_id}/runs"

    def __init__(
        self,
        failure_rate: float = 0.1,
        min_delay: float = 2.0,
        max_delay: float = 5.0,
        timeout: float = 30.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._failure_rate = failure_rate
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._timeout = timeout
        self._rng = rng or random.Random()

    async def deploy(self, workflow_json: Dict[str, Any], tenant_id: str) -> BuilderResult:
        try:
            return await asyncio.wait_for(self._deploy(tenant_id), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise BuilderTimeout(f"Builder call timed out after {self._timeout:.0f}s") from e

    async def _deploy(self, tenant_id: str) -> BuilderResult:
        await asyncio.sleep(self._rng.uniform(self._min_delay, self._max_delay))
        if self._rng.random() < self._failure_rate:
            return BuilderResult(success=False, error="Builder API deployment failed")
        scenario_id = f"scenario_{tenant_id}_{int(time.time() * 1000)}"
        return BuilderResult(
            success=True,
            scenario_id=scenario_id,
            view_url=self.VIEW_URL.format(scenario_id=scenario_id),
        )


def create_builder_client(settings) -> BuilderClient:
    """HttpBuilderClient if BUILDER_BASE_URL is set, else the simulator."""
    if settings.BUILDER_BASE_URL:
        return HttpBuilderClient(
            settings.BUILDER_BASE_URL,
            api_key=settings.BUILDER_API_KEY,
            timeout=settings.BUILDER_TIMEOUT,
        )
    logger.info("BUILDER_BASE_URL not set, using simulated builder")
    return SimulatedBuilderClient(
        failure_rate=settings.BUILDER_SIMULATED_FAILURE_RATE,
        timeout=settings.BUILDER_TIMEOUT,
    )
