# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id or str(uuid.uuid4())
        super().__init__(message)


class WorkflowNotFoundError(APIError):
    def __init__(self, workflow_id: int, trace_id: str = None):
        super().__init__(
            code="WORKFLOW_NOT_FOUND",
            message=f"Workflow '{workflow_id}' not found",
            status_code=404,
            trace_id=trace_id,
        )


class WorkflowValidationAPIError(APIError):
    def __init__(self, error: str, trace_id: str = None):
        super().__init__(
            code="WORKFLOW_VALIDATION_ERROR",
            message="Workflow definition is invalid",
            status_code=422,
            details={"error": error},
            trace_id=trace_id,
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Global exception handler for APIError."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": exc.trace_id,
            "details": exc.details,
        },
    )
