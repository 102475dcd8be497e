# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Workflow Generator — Natural-language prompt → validated workflow.

Two variants, chosen once at startup by create_generator():

  - LlmBackedGenerator:    asks the model for workflow JSON, parses and
                           validates it; any failure (timeout, provider
                           error, bad JSON, schema violation) yields
                           success=False with a template fallback_workflow.
  - TemplateOnlyGenerator: no model configured; returns the keyword
                           template directly with success=True.

Callers tell the two paths apart only by GenerationResult.provenance.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flowsmith.core.metrics import pipeline_metrics
from flowsmith.generator.templates import GenerationError, render_template
from flowsmith.protocols.workflow import (
    WORKFLOW_SYSTEM_PROMPT,
    WorkflowDefinition,
    validate_workflow,
)
from flowsmith.runtime.llm_client import LLMClient, LLMError

logger = logging.getLogger("flowsmith.generator")

PROVENANCE_AI = "ai"
PROVENANCE_TEMPLATE = "template"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class GenerationResult:
    success: bool
    workflow: Optional[WorkflowDefinition] = None
    tokens_used: int = 0
    latency_ms: int = 0
    provenance: str = PROVENANCE_TEMPLATE
    error: Optional[str] = None
    fallback_workflow: Optional[WorkflowDefinition] = None

    def to_dict(self) -> Dict[str, Any]:
        """camelCase response body for the dashboard."""
        if self.success:
            return {
                "success": True,
                "workflow": self.workflow.to_json_dict() if self.workflow else None,
                "tokensUsed": self.tokens_used,
                "latencyMs": self.latency_ms,
                "provenance": self.provenance,
            }
        return {
            "success": False,
            "error": self.error,
            "fallbackWorkflow": (
                self.fallback_workflow.to_json_dict() if self.fallback_workflow else None
            ),
            "latencyMs": self.latency_ms,
            "provenance": PROVENANCE_TEMPLATE,
        }


class Generator(ABC):
    """Capability: turn a prompt into a workflow."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GenerationResult:
        ...


class TemplateOnlyGenerator(Generator):
    """Deterministic keyword templates, no model involved."""

    async def generate(
        self,
        prompt: str,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GenerationResult:
        start = time.monotonic()
        workflow = render_template(prompt)
        pipeline_metrics.inc("generations_template")
        return GenerationResult(
            success=True,
            workflow=workflow,
            tokens_used=0,
            latency_ms=int((time.monotonic() - start) * 1000),
            provenance=PROVENANCE_TEMPLATE,
        )


class LlmBackedGenerator(Generator):
    """Model-generated workflows with template fallback."""

    def __init__(self, llm: LLMClient) -> None:
        self._llm = llm

    async def generate(
        self,
        prompt: str,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GenerationResult:
        start = time.monotonic()
        try:
            completion = await self._llm.complete(
                WORKFLOW_SYSTEM_PROMPT,
                f"Create a workflow for: {prompt}",
                json_output=True,
                temperature=0.2,
                max_tokens=4000,
            )
            workflow = parse_workflow_text(completion.content)
        except (LLMError, GenerationError) as e:
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.warning(
                "Workflow generation failed (tenant=%s, %dms): %s; using template",
                tenant_id, latency_ms, e,
            )
            pipeline_metrics.inc("generations_failed")
            return GenerationResult(
                success=False,
                error=str(e),
                fallback_workflow=render_template(prompt),
                latency_ms=latency_ms,
            )

        latency_ms = int((time.monotonic() - start) * 1000)
        pipeline_metrics.inc("generations_ai")
        pipeline_metrics.observe("generation_latency", latency_ms)
        logger.info(
            "Workflow generated: %d tokens, %dms (tenant=%s)",
            completion.tokens_used, latency_ms, tenant_id,
        )
        return GenerationResult(
            success=True,
            workflow=workflow,
            tokens_used=completion.tokens_used,
            latency_ms=latency_ms,
            provenance=PROVENANCE_AI,
        )


def parse_workflow_text(text: str) -> WorkflowDefinition:
    """Parse model output (optionally fenced) into a validated workflow."""
    body = (text or "").strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        data = json.loads(body)
    except ValueError as e:
        raise GenerationError(f"Invalid JSON returned: {e}") from e

    result = validate_workflow(data)
    if not result.success:
        raise GenerationError(f"Workflow validation failed: {result.error}")
    return result.workflow


def create_generator(llm: Optional[LLMClient]) -> Generator:
    """Pick the generator variant from configuration."""
    if llm is not None and llm.is_configured:
        logger.info("Workflow generation: model-backed (%s)", llm.model)
        return LlmBackedGenerator(llm)
    logger.warning("DASHSCOPE_API_KEY not set, workflow generation uses templates only")
    return TemplateOnlyGenerator()
