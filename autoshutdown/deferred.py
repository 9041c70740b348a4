"""
Deferred - A future settled from outside its creator.

Used for the client start-up handshake: the init message and the local
initialization finish at unrelated points, and any number of coroutines
can wait on either.

Example:
    ready = Deferred()

    async def waiter():
        data = await ready

    ready.resolve({"key": "value"})
    ready.resolve("ignored")  # already settled, returns False
"""

import asyncio
from collections.abc import Generator
from typing import Any, Generic, TypeVar

__all__ = ["Deferred"]

T = TypeVar("T")


class Deferred(Generic[T]):
    """Settle-once wrapper around an asyncio future."""

    __slots__ = ("_future",)

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if loop is None:
            loop = asyncio.get_running_loop()
        self._future: asyncio.Future[T] = loop.create_future()

    @property
    def done(self) -> bool:
        """True once resolved or rejected."""
        return self._future.done()

    def resolve(self, value: T | None = None) -> bool:
        """Resolve with value.

        Returns:
            True if this call settled the deferred, False if it was already settled
        """
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        """Reject with an exception.

        Returns:
            True if this call settled the deferred, False if it was already settled
        """
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    def result(self) -> T:
        """Settled value; raises like ``Future.result()`` otherwise."""
        return self._future.result()

    def __await__(self) -> Generator[Any, None, T]:
        # A cancelled waiter must not cancel the shared future
        return asyncio.shield(self._future).__await__()

    def __repr__(self) -> str:
        if not self._future.done():
            state = "pending"
        elif self._future.cancelled():
            state = "cancelled"
        elif self._future.exception() is not None:
            state = "rejected"
        else:
            state = "resolved"
        return f"<Deferred {state}>"
