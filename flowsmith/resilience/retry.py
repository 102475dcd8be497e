# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Retry Policy — Bounded attempts with exponential backoff, per job kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from flowsmith.protocols.jobs import JobKind

logger = logging.getLogger("flowsmith.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    backoff_base: float = 1.0        # seconds
    backoff_multiplier: float = 2.0  # exponential factor
    max_backoff: float = 60.0        # cap

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before the attempt following `attempt`."""
        delay = self.backoff_base * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff)

    @property
    def backoff_ms(self) -> List[int]:
        """Delays between consecutive attempts, in milliseconds."""
        return [
            int(self.next_delay(attempt) * 1000)
            for attempt in range(1, self.max_attempts)
        ]

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


# Deploy calls an external service and fails more often: one extra
# attempt and a slower curve.
VALIDATE_RETRY_POLICY = RetryPolicy(max_attempts=2, backoff_base=1.0)
DEPLOY_RETRY_POLICY = RetryPolicy(max_attempts=3, backoff_base=2.0)

_POLICIES = {
    JobKind.VALIDATE: VALIDATE_RETRY_POLICY,
    JobKind.DEPLOY: DEPLOY_RETRY_POLICY,
}


def policy_for(kind: JobKind) -> RetryPolicy:
    return _POLICIES[JobKind(kind)]


def decide(kind: JobKind, job_id: str, attempt: int, error: BaseException) -> str:
    """
    Decide what to do after a failed attempt.

    Returns: "retry" | "dead_letter"
    """
    kind = JobKind(kind)
    policy = policy_for(kind)
    if policy.should_retry(attempt):
        logger.warning(
            "Job %s/%s#%d failed: %s; will retry in %.1fs",
            kind.value, job_id, attempt, error, policy.next_delay(attempt),
        )
        return "retry"
    logger.error(
        "Job %s/%s#%d failed: %s; max attempts exhausted, dead letter",
        kind.value, job_id, attempt, error,
    )
    return "dead_letter"
