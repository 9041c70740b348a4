"""
Check composition and cleanup sequencing.

Checks and cleanups are zero-argument callables that may return a plain
value or an awaitable. Both runners normalise results through ``settle()``
so sync and async callables compose the same way.

- run_checks: left to right, lazy, short-circuits on the first falsy result
- run_cleanups: reverse registration order, one at a time
"""

import inspect
from collections.abc import Awaitable, Callable, Iterable, Sequence
from enum import Enum
from typing import Any, TypeVar

import structlog

from .errors import CleanupError

__all__ = [
    "Check",
    "Cleanup",
    "CleanupPolicy",
    "run_checks",
    "run_cleanups",
    "settle",
]

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Type aliases for watchdog callables
Check = Callable[[], bool | Awaitable[bool]]
Cleanup = Callable[[], Any | Awaitable[Any]]


class CleanupPolicy(Enum):
    """What the sequencer does when a cleanup raises."""

    HALT = "halt"
    CONTINUE = "continue"


async def settle(result: T | Awaitable[T]) -> T:
    """Await result if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(result):
        return await result
    return result


async def run_checks(checks: Iterable[Check]) -> bool:
    """Evaluate checks in order until one fails.

    Each check is invoked only after the previous one passed. Exceptions
    from a check propagate to the caller.

    Returns:
        True if every check passed (or there were none)
    """
    for check in checks:
        if not await settle(check()):
            return False
    return True


async def run_cleanups(
    cleanups: Sequence[Cleanup],
    policy: CleanupPolicy = CleanupPolicy.HALT,
) -> None:
    """Run cleanups in reverse registration order.

    Args:
        cleanups: Cleanups in registration order
        policy: HALT stops at the first failure, CONTINUE logs and moves on

    Raises:
        CleanupError: A cleanup failed under the HALT policy
    """
    for cleanup in reversed(cleanups):
        try:
            await settle(cleanup())
        except Exception as e:
            if policy is CleanupPolicy.HALT:
                raise CleanupError(cleanup, str(e)) from e
            logger.error(
                "cleanup_failed",
                cleanup=getattr(cleanup, "__qualname__", repr(cleanup)),
                error=str(e),
            )
