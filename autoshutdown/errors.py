"""Exceptions raised by the watchdog."""

from typing import Any

__all__ = ["CleanupError", "WatchdogError"]


class WatchdogError(Exception):
    """Base class for watchdog errors."""


class CleanupError(WatchdogError):
    """Raised when a cleanup action fails and the sequence is halted."""

    def __init__(self, action: Any, reason: str):
        self.action = action
        self.reason = reason
        name = getattr(action, "__qualname__", repr(action))
        super().__init__(f"Cleanup '{name}' failed: {reason}")
