"""
Activity Trackers - Count in-flight work and announce changes.

A tracker is the event source an adapter listens to. Servers and
middleware call enter()/leave() around each unit of work; listeners
registered with on() are told about every "connect" and "disconnect".
"""

import functools
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

__all__ = ["CONNECT", "DISCONNECT", "ActivityTracker", "ConnectionTracker"]

logger = structlog.get_logger(__name__)

CONNECT = "connect"
DISCONNECT = "disconnect"

Listener = Callable[[], Any]


class ActivityTracker:
    """Counter of active work with connect/disconnect listeners."""

    def __init__(self) -> None:
        self._active = 0
        self._listeners: dict[str, list[Listener]] = {CONNECT: [], DISCONNECT: []}

    @property
    def active(self) -> int:
        """Units of work currently in flight."""
        return self._active

    def on(self, event: str, listener: Listener) -> None:
        """Register a listener for "connect" or "disconnect".

        Raises:
            ValueError: Unknown event name
        """
        if event not in self._listeners:
            raise ValueError(f"unknown tracker event: {event!r}")
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def enter(self) -> None:
        self._active += 1
        self._emit(CONNECT)

    def leave(self) -> None:
        self._active = max(0, self._active - 1)
        self._emit(DISCONNECT)

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener()
            except Exception as e:
                logger.error("tracker_listener_error", tracker_event=event, error=str(e))


class ConnectionTracker(ActivityTracker):
    """Tracks connections of an ``asyncio.start_server`` server.

    Example:
        tracker = ConnectionTracker()
        server = await asyncio.start_server(tracker.wrap(handle_client), port=8080)
        watchdog.attach_server(server, tracker)
    """

    def wrap(
        self,
        handler: Callable[[Any, Any], Awaitable[None] | None],
    ) -> Callable[[Any, Any], Awaitable[None]]:
        """Wrap a client_connected_cb so each connection is counted."""

        @functools.wraps(handler)
        async def tracked(reader: Any, writer: Any) -> None:
            self.enter()
            try:
                result = handler(reader, writer)
                if result is not None:
                    await result
            finally:
                self.leave()

        return tracked
