# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
LLM Client — DashScope completion wrapper used by generation and analytics.

dashscope.Generation.call() is synchronous; it runs in a worker thread
and the whole call is bounded by asyncio.wait_for so a slow provider
surfaces as LLMTimeout instead of hanging a request or a worker.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import dashscope

logger = logging.getLogger("flowsmith.llm")


class LLMError(Exception):
    """The provider answered with an error or an empty message."""


class LLMTimeout(LLMError):
    """The completion did not finish within the configured timeout."""


class LLMNotConfigured(LLMError):
    """No API key configured."""


@dataclass
class Completion:
    content: str
    tokens_used: int = 0
    model: str = ""


class LLMClient:
    """Thin async facade over DashScope chat completion."""

    def __init__(
        self,
        api_key: str,
        model: str = "qwen3-max",
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_output: bool = False,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        """
        Run one chat completion.

        Raises:
            LLMNotConfigured: no API key.
            LLMTimeout: provider exceeded self.timeout.
            LLMError: non-200 response or empty content.
        """
        if not self.is_configured:
            raise LLMNotConfigured("DASHSCOPE_API_KEY not configured")

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        kwargs: Dict[str, Any] = {"temperature": temperature}
        if json_output:
            kwargs["response_format"] = {"type": "json_object"}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._sync_call, messages, kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("LLM call timed out after %.1fs (model=%s)", self.timeout, self.model)
            raise LLMTimeout(f"LLM call timed out after {self.timeout:.0f}s") from e

    def _sync_call(self, messages: List[Dict[str, Any]], kwargs: Dict[str, Any]) -> Completion:
        response = dashscope.Generation.call(
            model=self.model,
            messages=messages,
            api_key=self.api_key,
            result_format="message",
            **kwargs,
        )
        if response.status_code != 200:
            raise LLMError(f"DashScope error: {response.code} - {response.message}")

        content = response.output.choices[0].message.content
        if not content:
            raise LLMError("LLM returned empty content")
        return Completion(content=content, tokens_used=_total_tokens(response), model=self.model)


def _total_tokens(response: Any) -> int:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0
    if isinstance(usage, dict):
        total = usage.get("total_tokens")
        if total is None:
            total = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)
        return int(total or 0)
    total = getattr(usage, "total_tokens", None)
    if total is None:
        total = getattr(usage, "input_tokens", 0) + getattr(usage, "output_tokens", 0)
    return int(total or 0)
