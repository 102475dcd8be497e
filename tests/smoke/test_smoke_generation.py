# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Smoke test — Prompt → workflow against the real model, then static analysis.

Requires:
  - DASHSCOPE_API_KEY in environment / .env
  - Network access to DashScope API

Run:  pytest tests/smoke/test_smoke_generation.py -v -s
"""

import pytest

from flowsmith.core.config import settings
from flowsmith.generator.workflow_generator import LlmBackedGenerator
from flowsmith.runtime.llm_client import LLMClient
from flowsmith.workers.validate import analyze_workflow

pytestmark = pytest.mark.skipif(
    not settings.DASHSCOPE_API_KEY,
    reason="DASHSCOPE_API_KEY not set",
)

PROMPTS = [
    "When someone submits the contact form on my site, email the details to admin and post to Slack",
    "Every morning at 9, generate a blog post with AI and publish it to our CMS",
]


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", PROMPTS)
async def test_generate_real_workflow(prompt):
    llm = LLMClient(settings.DASHSCOPE_API_KEY, model=settings.DASHSCOPE_MODEL,
                    timeout=settings.LLM_TIMEOUT)
    result = await LlmBackedGenerator(llm).generate(prompt, tenant_id="smoke")

    print(f"\n[{result.provenance}] {result.latency_ms}ms, {result.tokens_used} tokens")
    if not result.success:
        print(f"  error: {result.error}")
        assert result.fallback_workflow is not None
        return

    report = analyze_workflow(result.workflow)
    print(f"  nodes: {result.workflow.node_ids}")
    print(f"  issues: {report.issues}")
    assert result.workflow.nodes
    assert result.workflow.triggers
