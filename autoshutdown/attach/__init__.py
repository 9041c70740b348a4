"""
Attachments - Adapters binding resources to a watchdog.

An adapter is a callable ``adapter(watchdog, resource, *args, **kwargs)``
that registers the resource's checks, cleanups and listener teardown via
``watchdog.attach()`` and returns the watchdog.

Example:
    def attach_queue(watchdog, queue):
        return watchdog.attach(queue, [queue.empty])

    register_attachment_type("queue", attach_queue)
    watchdog.attach_resource("queue", jobs)
"""

from collections.abc import Callable
from typing import Any

from .asgi import ActivityMiddleware, RequestTracker, attach_asgi
from .server import attach_server
from .tracker import CONNECT, DISCONNECT, ActivityTracker, ConnectionTracker

__all__ = [
    "CONNECT",
    "DISCONNECT",
    "ActivityMiddleware",
    "ActivityTracker",
    "ConnectionTracker",
    "RequestTracker",
    "attach_asgi",
    "attach_server",
    "attachment_types",
    "get_attachment_type",
    "register_attachment_type",
]

Adapter = Callable[..., Any]

_adapters: dict[str, Adapter] = {}


def register_attachment_type(kind: str, adapter: Adapter) -> Adapter:
    """Register an adapter under kind. Re-registering replaces it."""
    _adapters[kind] = adapter
    return adapter


def get_attachment_type(kind: str) -> Adapter:
    """Look up an adapter.

    Raises:
        KeyError: No adapter registered for kind
    """
    try:
        return _adapters[kind]
    except KeyError:
        raise KeyError(f"unknown attachment type: {kind!r}") from None


def attachment_types() -> list[str]:
    return sorted(_adapters)


register_attachment_type("server", attach_server)
register_attachment_type("asgi", attach_asgi)
