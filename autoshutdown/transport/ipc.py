"""
IPC Transport - Newline-delimited JSON over an inherited socket.

The controller creates a socket pair, passes one end to the child and
names its file descriptor in AUTOSHUTDOWN_IPC_FD. The child picks it up
with connect_parent(); the controller talks through ClientProcess.

Example (controller):
    client = await spawn([sys.executable, "worker.py"], data={"job": 42})
    await client.ready
    ...
    client.terminate()
    code = await client.wait()

Example (child):
    watchdog = AutoStartClient(timeout=60)   # finds the channel itself
    data = await watchdog.data
"""

import asyncio
import json
import os
import socket
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from ..contracts import EXIT, INIT, READY, MessageHandler
from ..deferred import Deferred

__all__ = [
    "IPC_FD_ENV",
    "ClientProcess",
    "SocketChannel",
    "connect_parent",
    "is_child",
    "spawn",
]

logger = structlog.get_logger(__name__)

IPC_FD_ENV = "AUTOSHUTDOWN_IPC_FD"


class SocketChannel(asyncio.Protocol):
    """ParentChannel over a connected stream socket.

    Messages sent before the transport is up are queued and flushed on
    connect. Handler errors are logged and never break the channel.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._handlers: list[MessageHandler] = []
        self._transport: asyncio.Transport | None = None
        self._buffer = bytearray()
        self._pending: list[bytes] = []
        self._closed: asyncio.Future[None] = loop.create_future()
        self._connect_task: asyncio.Task | None = None
        self._logger = logger.bind(component="ipc_channel")

    @classmethod
    def open(cls, sock: socket.socket, loop: asyncio.AbstractEventLoop | None = None) -> "SocketChannel":
        """Wrap a connected socket. Connection setup runs in the background."""
        if loop is None:
            loop = asyncio.get_running_loop()
        channel = cls(loop)
        sock.setblocking(False)
        channel._connect_task = loop.create_task(loop.connect_accepted_socket(lambda: channel, sock))
        channel._connect_task.add_done_callback(channel._on_connect_done)
        return channel

    def _on_connect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._mark_closed()
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("channel_connect_failed", error=str(exc))
            self._mark_closed()

    # ─────────────────────────────────────────────────────────────────
    # asyncio.Protocol
    # ─────────────────────────────────────────────────────────────────

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        for data in self._pending:
            self._transport.write(data)
        self._pending.clear()

    def data_received(self, data: bytes) -> None:
        self._buffer.extend(data)
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                break
            line = bytes(self._buffer[:end])
            del self._buffer[: end + 1]
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except ValueError as e:
                self._logger.warning("channel_bad_frame", error=str(e))
                continue
            self._dispatch(message)

    def connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        if exc is not None:
            self._logger.warning("channel_lost", error=str(exc))
        self._mark_closed()

    # ─────────────────────────────────────────────────────────────────
    # ParentChannel
    # ─────────────────────────────────────────────────────────────────

    def send(self, message: dict[str, Any]) -> None:
        """Send one message.

        Raises:
            ConnectionError: Channel already closed
        """
        if self._closed.done():
            raise ConnectionError("channel is closed")

        data = json.dumps(message).encode() + b"\n"
        if self._transport is None:
            self._pending.append(data)
        else:
            self._transport.write(data)

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe to incoming messages. Returns unsubscribe function."""
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler) if handler in self._handlers else None

    def _dispatch(self, message: Any) -> None:
        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception as e:
                self._logger.error("handler_error", error=str(e))

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    @property
    def is_closed(self) -> bool:
        return self._closed.done()

    def close(self) -> None:
        """Close the channel. Queued messages are flushed first."""
        if self._transport is not None:
            self._transport.close()
        elif self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        else:
            self._mark_closed()

    async def wait_closed(self) -> None:
        await asyncio.shield(self._closed)

    def _mark_closed(self) -> None:
        if not self._closed.done():
            self._closed.set_result(None)


# ─────────────────────────────────────────────────────────────────────────────
# Child side
# ─────────────────────────────────────────────────────────────────────────────

_parent: SocketChannel | None = None


def is_child() -> bool:
    """True if this process was spawned with a controller channel."""
    return _parent is not None or IPC_FD_ENV in os.environ


def connect_parent(loop: asyncio.AbstractEventLoop | None = None) -> SocketChannel | None:
    """Open the channel to the controller, once per process.

    The descriptor variable is removed from the environment so that
    grandchildren do not inherit it.

    Returns:
        The channel, or None when not running as a spawned child
    """
    global _parent
    if _parent is not None:
        return _parent

    fd = os.environ.pop(IPC_FD_ENV, None)
    if fd is None:
        return None

    sock = socket.socket(fileno=int(fd))
    _parent = SocketChannel.open(sock, loop)
    logger.debug("parent_channel_opened", fd=int(fd))
    return _parent


# ─────────────────────────────────────────────────────────────────────────────
# Controller side
# ─────────────────────────────────────────────────────────────────────────────


class ClientProcess:
    """Controller handle for a spawned client."""

    def __init__(self, process: asyncio.subprocess.Process, channel: SocketChannel) -> None:
        self.process = process
        self.channel = channel
        self.ready: Deferred[None] = Deferred()
        self._unsubscribe = channel.on_message(self._on_message)

    @property
    def pid(self) -> int:
        return self.process.pid

    def _on_message(self, message: Any) -> None:
        if isinstance(message, dict) and message.get("type") == READY:
            if self.ready.resolve():
                logger.info("client_ready", pid=self.pid)

    def terminate(self) -> None:
        """Ask the client to shut down now, bypassing its checks."""
        self.channel.send({"type": EXIT})

    async def wait(self) -> int:
        """Wait for the client to exit. Returns its exit status."""
        code = await self.process.wait()
        self._unsubscribe()
        self.channel.close()
        logger.info("client_exited", pid=self.pid, code=code)
        return code


async def spawn(
    argv: Sequence[str],
    *,
    source: Any = None,
    data: dict[str, Any] | None = None,
    env: dict[str, str] | None = None,
    cwd: str | os.PathLike | None = None,
) -> ClientProcess:
    """Start a client process and send it the init message.

    Args:
        argv: Program and arguments
        source: JSON-serialisable handle passed as "src" (e.g. an address)
        data: Initial data for the client
        env: Extra environment variables
        cwd: Working directory

    Returns:
        ClientProcess handle
    """
    parent_sock, child_sock = socket.socketpair()
    child_env = {**os.environ, **(env or {}), IPC_FD_ENV: str(child_sock.fileno())}

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            env=child_env,
            cwd=cwd,
            pass_fds=(child_sock.fileno(),),
        )
    except BaseException:
        parent_sock.close()
        raise
    finally:
        child_sock.close()

    client = ClientProcess(process, SocketChannel.open(parent_sock))
    client.channel.send({"type": INIT, "src": source, "data": data or {}})
    logger.info("client_spawned", pid=process.pid, argv=list(argv))
    return client
