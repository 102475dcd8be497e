# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from flowsmith.core.context import AppContext
from flowsmith.core.tenant import TenantContext


async def get_current_tenant(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> TenantContext:
    """
    Extract tenant and user context from request headers.

    Headers:
      - X-Tenant-Id: tenant isolation key (required)
      - X-User-Id:   workflow owner (optional)
      - Authorization: fallback tenant identification (Bearer <tenant>)
    """
    tenant_id = x_tenant_id
    if not tenant_id and authorization:
        parts = authorization.split(" ")
        if len(parts) == 2:
            tenant_id = parts[1]

    if not tenant_id:
        raise HTTPException(status_code=401, detail="Missing tenant identification")

    return TenantContext(tenant_id=tenant_id, user_id=x_user_id)


def get_context(request: Request) -> AppContext:
    """The AppContext attached to the app at startup."""
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return ctx

