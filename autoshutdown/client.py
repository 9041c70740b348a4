"""
Client Watchdog - Watchdog for processes started by a controller.

The timer starts disarmed. The controller sends an init message carrying
a communication handle and initial data; once that has arrived and local
initialization is finished, the timer is armed. The controller can also
force shutdown with an exit message.

Handshake:
    controller                       client
        |  {"type": "#asc-init"} -->   |  resolves source, data
        |                              |  finish_initialization()
        |  <-- {"type": "#asc-ready"}  |  resolves init, arms timer
        |  {"type": "#asc-exit"} -->   |  shutdown()
"""

import asyncio
from typing import Any

import structlog

from .contracts import EXIT, INIT, READY, ParentChannel
from .deferred import Deferred
from .transport import connect_parent
from .watchdog import AutoShutdown

__all__ = ["AutoStartClient"]

logger = structlog.get_logger(__name__)


class AutoStartClient(AutoShutdown):
    """Watchdog whose timer is gated by a controller handshake.

    Example:
        async def main():
            watchdog = AutoStartClient(timeout=60, defer_init=True)
            await load_models()
            watchdog.finish_initialization()
            config = await watchdog.data
    """

    def __init__(
        self,
        *args: Any,
        defer_init: bool = False,
        channel: ParentChannel | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the client watchdog.

        Args:
            *args: Passed to AutoShutdown (timeout, checks, cleanups)
            defer_init: Caller invokes finish_initialization() itself
            channel: Controller channel (default: inherited IPC channel, if any)
            **kwargs: Passed to AutoShutdown
        """
        super().__init__(*args, **kwargs)
        self.stop()

        self._init: Deferred[None] = Deferred(self._loop)
        self._source: Deferred[Any] = Deferred(self._loop)
        self._data: Deferred[dict] = Deferred(self._loop)
        self._arming: asyncio.Task | None = None

        self._channel = channel if channel is not None else connect_parent(self._loop)
        if self._channel is not None:
            unsubscribe = self._channel.on_message(self._on_message)
            self.add_cleanup(unsubscribe)

        if not defer_init:
            self.finish_initialization()

    @property
    def channel(self) -> ParentChannel | None:
        return self._channel

    @property
    def source(self) -> Deferred[Any]:
        """Communication handle from the init message."""
        return self._source

    @property
    def data(self) -> Deferred[dict]:
        """Initial data from the init message."""
        return self._data

    @property
    def initialized(self) -> Deferred[None]:
        """Resolved once finish_initialization() ran."""
        return self._init

    def finish_initialization(self) -> "AutoStartClient":
        """Tell the controller this process is ready. Idempotent."""
        if self._init.done:
            return self
        if self._channel is not None:
            self._channel.send({"type": READY})
        self._init.resolve()
        logger.debug("client_initialized")
        return self

    def _on_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.debug("client_message_ignored", message=repr(message))
            return

        kind = message.get("type")
        if kind == INIT:
            if not self._source.resolve(message.get("src")):
                logger.debug("client_duplicate_init")
                return
            self._data.resolve(message.get("data") or {})
            logger.info("client_init_received")
            self._arming = self._loop.create_task(self._start_when_initialized())
        elif kind == EXIT:
            logger.info("client_exit_requested")
            self._start_shutdown()
        else:
            logger.debug("client_message_ignored", type=kind)

    async def _start_when_initialized(self) -> None:
        await self._init
        await self._source
        await self._data
        self.start()
