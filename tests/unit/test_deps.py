# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""Unit tests for API dependencies (tenant + user headers)."""

import pytest
from fastapi import HTTPException

from flowsmith.api.deps import get_current_tenant


class TestGetCurrentTenant:
    @pytest.mark.asyncio
    async def test_tenant_from_header(self):
        ctx = await get_current_tenant(
            authorization=None,
            x_tenant_id="acme",
            x_user_id=None,
        )
        assert ctx.tenant_id == "acme"
        assert ctx.user_id is None

    @pytest.mark.asyncio
    async def test_tenant_with_user_id(self):
        ctx = await get_current_tenant(
            authorization=None,
            x_tenant_id="t1",
            x_user_id="owner-42",
        )
        assert ctx.tenant_id == "t1"
        assert ctx.user_id == "owner-42"

    @pytest.mark.asyncio
    async def test_tenant_from_bearer(self):
        ctx = await get_current_tenant(
            authorization="Bearer globex",
            x_tenant_id=None,
            x_user_id=None,
        )
        assert ctx.tenant_id == "globex"

    @pytest.mark.asyncio
    async def test_missing_tenant_raises(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_tenant(
                authorization=None,
                x_tenant_id=None,
                x_user_id=None,
            )
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_header_takes_priority_over_bearer(self):
        ctx = await get_current_tenant(
            authorization="Bearer bearer_tenant",
            x_tenant_id="header_tenant",
            x_user_id=None,
        )
        assert ctx.tenant_id == "header_tenant"


class TestGetContext:
    def test_uninitialized_app_is_503(self):
        from types import SimpleNamespace
        from flowsmith.api.deps import get_context

        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
        with pytest.raises(HTTPException) as exc_info:
            get_context(request)
        assert exc_info.value.status_code == 503
