"""
Parent Channel Protocol - Contract for controller <-> client messaging.

A client watchdog only needs two things from its transport: a way to send
a message to the controller and a way to be told about incoming messages.
Framing, sockets and process spawning belong to the implementation.

Messages are plain dicts with a "type" key:
- {"type": "#asc-init", "src": <handle>, "data": {...}}  controller -> client
- {"type": "#asc-exit"}                                   controller -> client
- {"type": "#asc-ready"}                                  client -> controller
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "EXIT",
    "INIT",
    "READY",
    "MessageHandler",
    "ParentChannel",
]

INIT = "#asc-init"
EXIT = "#asc-exit"
READY = "#asc-ready"

MessageHandler = Callable[[Any], None]


@runtime_checkable
class ParentChannel(Protocol):
    """Bidirectional, ordered message channel.

    Example:
        class QueueChannel:
            def send(self, message: dict) -> None:
                self._outbox.put_nowait(message)

            def on_message(self, handler):
                self._handlers.append(handler)
                return lambda: self._handlers.remove(handler)
    """

    def send(self, message: dict[str, Any]) -> None:
        """Send a message to the other side."""
        ...

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe to incoming messages. Returns an unsubscribe function."""
        ...
