# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Flowsmith Application Entry Point.

FastAPI app with lifespan (AppContext + database), middleware and
API routers. Run with: uvicorn flowsmith.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowsmith.api.errors import APIError, api_error_handler
from flowsmith.api.middleware import TraceMiddleware
from flowsmith.api.observability import router as observability_router
from flowsmith.api.workflows import router as workflows_router
from flowsmith.core.config import settings
from flowsmith.core.context import AppContext, build_context
from flowsmith.core.logging import setup_logging
from flowsmith.storage.database import close_db

logger = logging.getLogger("flowsmith.main")


def create_app(ctx: AppContext = None) -> FastAPI:
    """
    Build the FastAPI app.

    With ctx given (tests) the lifespan initializes that context instead
    of building one from settings; it is still shut down on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ctx is None:
            setup_logging(settings.LOG_LEVEL)
        context = ctx or build_context(settings)
        await context.init()
        app.state.ctx = context
        logger.info("[Flowsmith] Pipeline ready (env=%s)", settings.FLOWSMITH_ENV)
        yield
        await context.shutdown()
        if ctx is None:
            await close_db()
        logger.info("[Flowsmith] Shutdown complete")

    application = FastAPI(
        title="Flowsmith",
        description="Prompt-to-workflow generation, validation and deployment pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ── Middleware ───────────────────────────────────────────────
    application.add_middleware(TraceMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error Handlers ──────────────────────────────────────────
    application.add_exception_handler(APIError, api_error_handler)

    # ── Routes ──────────────────────────────────────────────────
    application.include_router(workflows_router, prefix="/api")
    application.include_router(observability_router)
    return application


app = create_app()
