"""
Serve - Run an ASGI app that stops itself when idle.

Wires the request-tracking middleware into the app, runs it under
uvicorn and attaches the server to the watchdog so that an idle
shutdown first stops uvicorn gracefully, then runs the remaining
cleanups (by default: exit the process).
"""

import asyncio
from typing import Any

import structlog
import uvicorn

from .attach import ActivityMiddleware, RequestTracker
from .config import config as default_config
from .watchdog import AutoShutdown, WatchdogState

__all__ = ["serve"]

logger = structlog.get_logger(__name__)


async def serve(
    app: Any,
    watchdog: AutoShutdown,
    host: str | None = None,
    port: int | None = None,
    log_level: str = "info",
) -> None:
    """Serve app until the watchdog decides the process is idle.

    Args:
        app: Starlette/FastAPI application (middleware is added to it)
        watchdog: Watchdog owning the idle timer
        host: Bind address (default: config.host)
        port: Port (default: config.port)
        log_level: uvicorn log level
    """
    tracker = RequestTracker()
    app.add_middleware(ActivityMiddleware, tracker=tracker)

    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host or default_config.host,
            port=port or default_config.port,
            log_level=log_level,
            access_log=False,
        )
    )
    stopped = asyncio.Event()
    watchdog.attach_asgi(tracker, server, stopped)

    logger.info("serve_starting", host=server.config.host, port=server.config.port)
    try:
        await server.serve()
    finally:
        stopped.set()
        watchdog.detach(tracker)
        logger.info("serve_stopped")
        if watchdog.state is WatchdogState.TERMINATED:
            # Let the remaining cleanups (and the exit action) finish
            await watchdog.shutdown()
