"""
ASGI attachment - Request tracking for Starlette/FastAPI apps.

ActivityMiddleware counts in-flight requests on a RequestTracker. The
attachment adds a "no request in flight" check and, when a uvicorn server
is given, a cleanup that asks it to exit.

Example:
    tracker = RequestTracker()
    app.add_middleware(ActivityMiddleware, tracker=tracker)
    watchdog.attach_asgi(tracker, server)
"""

import asyncio
from typing import TYPE_CHECKING, Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .tracker import CONNECT, DISCONNECT, ActivityTracker

if TYPE_CHECKING:
    from ..watchdog import AutoShutdown

__all__ = ["ActivityMiddleware", "RequestTracker", "attach_asgi"]


class RequestTracker(ActivityTracker):
    """Counts in-flight HTTP requests."""


class ActivityMiddleware(BaseHTTPMiddleware):
    """Marks each request on a tracker for idle monitoring."""

    def __init__(self, app, tracker: RequestTracker) -> None:
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next) -> Response:
        self.tracker.enter()
        try:
            return await call_next(request)
        finally:
            self.tracker.leave()


def attach_asgi(
    watchdog: "AutoShutdown",
    tracker: RequestTracker,
    server: Any = None,
    stopped: asyncio.Event | None = None,
) -> "AutoShutdown":
    """Attach an ASGI request tracker to a watchdog.

    Args:
        watchdog: Watchdog to attach to
        tracker: Tracker fed by ActivityMiddleware (the detach key)
        server: Object with a ``should_exit`` flag, e.g. uvicorn.Server
        stopped: Set once the server has finished; the cleanup waits for it

    Returns:
        The watchdog
    """

    def on_activity() -> None:
        watchdog.reset_timer()

    def idle() -> bool:
        return tracker.active == 0

    async def stop_server() -> None:
        server.should_exit = True
        if stopped is not None:
            await stopped.wait()

    def remove_listeners() -> None:
        tracker.remove_listener(CONNECT, on_activity)
        tracker.remove_listener(DISCONNECT, on_activity)

    tracker.on(CONNECT, on_activity)
    tracker.on(DISCONNECT, on_activity)
    cleanups = [stop_server] if server is not None else []
    return watchdog.attach(tracker, [idle], cleanups, [remove_listeners])
