"""
autoshutdown - Terminate idle processes once their resources are quiet.

A watchdog counts activity and, every ``timeout`` seconds, checks whether
the process may stop: no activity since the last look and every attached
resource idle. If so it runs the registered cleanups and exits.

Example:
    import autoshutdown

    async def main():
        watchdog = autoshutdown.auto_shutdown(timeout=600)
        tracker = autoshutdown.ConnectionTracker()
        server = await asyncio.start_server(tracker.wrap(handle), port=8080)
        watchdog.attach_server(server, tracker)
        await server.serve_forever()
"""

__version__ = "1.0.0"

from typing import Any

from .attach import (
    ActivityMiddleware,
    ConnectionTracker,
    RequestTracker,
    register_attachment_type,
)
from .client import AutoStartClient
from .compose import CleanupPolicy
from .config import WatchdogConfig, config
from .deferred import Deferred
from .errors import CleanupError, WatchdogError
from .watchdog import AutoShutdown, WatchdogState, exit_process

__all__ = [
    "__version__",
    "ActivityMiddleware",
    "AutoShutdown",
    "AutoStartClient",
    "CleanupError",
    "CleanupPolicy",
    "ConnectionTracker",
    "Deferred",
    "RequestTracker",
    "WatchdogConfig",
    "WatchdogError",
    "WatchdogState",
    "auto_shutdown",
    "client",
    "config",
    "exit_process",
    "register_attachment_type",
]


def auto_shutdown(*args: Any, **kwargs: Any) -> AutoShutdown:
    """Create a standalone watchdog (timer armed immediately)."""
    return AutoShutdown(*args, **kwargs)


def client(*args: Any, **kwargs: Any) -> AutoStartClient:
    """Create a client watchdog (timer armed after the controller handshake)."""
    return AutoStartClient(*args, **kwargs)
