# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Tenant Context — Multi-tenancy support.

Every workflow belongs to a tenant. TenantContext carries tenant
identity from the HTTP layer into the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class TenantContext:
    """Immutable tenant identity for request-scoped operations."""

    tenant_id: str
    user_id: Optional[str] = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id must not be empty")

    def __repr__(self) -> str:
        return f"TenantContext(tenant={self.tenant_id!r}, user={self.user_id!r})"
