"""
Centralized configuration for autoshutdown.

Configuration sources (priority order):
1. Explicit constructor arguments
2. Environment variables (AUTOSHUTDOWN_*)
3. Default values

Environment variables:
- AUTOSHUTDOWN_TIMEOUT: Idle timeout in seconds (default: 3600)
- AUTOSHUTDOWN_EXIT_CODE: Status used by the exit cleanup (default: 0)
- AUTOSHUTDOWN_CLEANUP_POLICY: "halt" or "continue" on cleanup failure (default: halt)
- AUTOSHUTDOWN_LOG_LEVEL: Log level (default: INFO)
- AUTOSHUTDOWN_HOST: Bind address for the serve helper (default: 127.0.0.1)
- AUTOSHUTDOWN_PORT: Port for the serve helper (default: 8000)
"""

import os
from dataclasses import dataclass

__all__ = ["WatchdogConfig", "config"]


def _get_env(key: str, default: str) -> str:
    """Get environment variable with AUTOSHUTDOWN_ prefix."""
    return os.environ.get(f"AUTOSHUTDOWN_{key}", default)


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    return int(_get_env(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    return float(_get_env(key, str(default)))


@dataclass(frozen=True)
class WatchdogConfig:
    """Immutable watchdog configuration."""

    timeout: float = _get_env_float("TIMEOUT", 3600.0)
    exit_code: int = _get_env_int("EXIT_CODE", 0)
    cleanup_policy: str = _get_env("CLEANUP_POLICY", "halt")
    log_level: str = _get_env("LOG_LEVEL", "INFO")

    # Serve helper
    host: str = _get_env("HOST", "127.0.0.1")
    port: int = _get_env_int("PORT", 8000)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.cleanup_policy.lower() not in ("halt", "continue"):
            raise ValueError(f"unknown cleanup policy: {self.cleanup_policy!r}")


# Global singleton
config = WatchdogConfig()
