# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Worker Runner — Stand-alone queue consumer process.

    python -m flowsmith.workers.runner

Builds the same AppContext as the API (with RUN_WORKERS forced on) and
consumes validate and deploy jobs until interrupted. Without Redis there
is nothing to consume: jobs run inline in the API process, so the runner
exits.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from flowsmith.core.config import settings
from flowsmith.core.context import build_context
from flowsmith.core.logging import setup_logging
from flowsmith.storage.database import close_db

logger = logging.getLogger("flowsmith.runner")


async def run() -> int:
    setup_logging(settings.LOG_LEVEL)
    ctx = build_context(settings)
    await ctx.init(start_consumers=True)

    if not ctx.queue.is_durable:
        logger.error("[runner] Redis unavailable, no durable queue to consume")
        await ctx.shutdown()
        await close_db()
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows

    logger.info("[runner] consuming jobs (prefix=%s)", settings.QUEUE_PREFIX)
    try:
        await stop.wait()
    finally:
        await ctx.shutdown()
        await close_db()
        logger.info("[runner] stopped")
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
