"""
Server attachment - asyncio servers with counted connections.

Contributes:
- check: no open connections
- cleanup: close the server and wait until it is closed
- listeners: every connect/disconnect resets the idle timer
"""

import asyncio
from typing import TYPE_CHECKING

from .tracker import CONNECT, DISCONNECT, ConnectionTracker

if TYPE_CHECKING:
    from ..watchdog import AutoShutdown

__all__ = ["attach_server"]


def attach_server(
    watchdog: "AutoShutdown",
    server: asyncio.AbstractServer,
    tracker: ConnectionTracker,
) -> "AutoShutdown":
    """Attach an asyncio server to a watchdog.

    Args:
        watchdog: Watchdog to attach to
        server: Server returned by asyncio.start_server / loop.create_server
        tracker: Tracker whose wrap() produced the server's client callback

    Returns:
        The watchdog (server is the detach key)
    """

    def on_activity() -> None:
        watchdog.reset_timer()

    def idle() -> bool:
        return tracker.active == 0

    async def close() -> None:
        server.close()
        await server.wait_closed()

    def remove_listeners() -> None:
        tracker.remove_listener(CONNECT, on_activity)
        tracker.remove_listener(DISCONNECT, on_activity)

    tracker.on(CONNECT, on_activity)
    tracker.on(DISCONNECT, on_activity)
    return watchdog.attach(server, [idle], [close], [remove_listeners])
