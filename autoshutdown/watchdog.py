"""
Watchdog - Terminate the process once it has been idle long enough.

Counts activity, and every ``timeout`` seconds evaluates the registered
checks. If all pass, the cleanups run in reverse registration order; the
default last-registered cleanup exits the process. Otherwise the activity
counter is reset and the timer is armed again.

States:
- DISARMED: no timer pending
- ARMED: one timer pending
- EVALUATING: timer fired, checks are running
- TERMINATED: shutdown started (terminal)

Example:
    async def main():
        watchdog = AutoShutdown(timeout=300)
        server = await asyncio.start_server(tracker.wrap(handle), port=8080)
        watchdog.attach_server(server, tracker)
        await server.serve_forever()
"""

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from .compose import Check, Cleanup, CleanupPolicy, run_checks, run_cleanups
from .config import WatchdogConfig
from .config import config as default_config
from .errors import CleanupError

__all__ = ["AttachmentRecord", "AutoShutdown", "WatchdogState", "exit_process"]

logger = structlog.get_logger(__name__)


class WatchdogState(Enum):
    """Watchdog lifecycle states."""

    DISARMED = "disarmed"
    ARMED = "armed"
    EVALUATING = "evaluating"
    TERMINATED = "terminated"


@dataclass
class AttachmentRecord:
    """Checks, cleanups and teardown actions contributed by one resource."""

    resource: Any
    checks: list[Check] = field(default_factory=list)
    cleanups: list[Cleanup] = field(default_factory=list)
    teardown: list[Callable[[], Any]] = field(default_factory=list)


def exit_process(code: int | None = None) -> None:
    """Exit the process. code defaults to the global config's exit_code."""
    if code is None:
        code = default_config.exit_code
    logger.info("process_exit", code=code)
    raise SystemExit(code)


class AutoShutdown:
    """Idle watchdog with pluggable checks and cleanups.

    Checks and cleanups are ordered sets keyed by the callables themselves,
    so adding twice keeps one entry and removal needs the same object.
    Attached resources are keyed by identity.
    """

    def __init__(
        self,
        timeout: float | None = None,
        checks: Iterable[Check] = (),
        cleanups: Iterable[Cleanup] = (),
        *,
        exit_action: Cleanup | None = None,
        cleanup_policy: CleanupPolicy | str | None = None,
        config: WatchdogConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize and arm the watchdog.

        Args:
            timeout: Seconds between evaluations (default: config.timeout)
            checks: Extra checks, evaluated after the activity check
            cleanups: Initial cleanups, registered before the exit action
            exit_action: Final cleanup (default: exit_process with config.exit_code)
            cleanup_policy: Behaviour when a cleanup fails (default: config)
            config: Configuration (default: global config)
            loop: Event loop (default: the running loop)
        """
        self._config = config or default_config
        self._loop = loop or asyncio.get_running_loop()

        if timeout is None:
            timeout = self._config.timeout
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._timeout = float(timeout)

        policy = cleanup_policy or self._config.cleanup_policy
        self._cleanup_policy = CleanupPolicy(policy.lower() if isinstance(policy, str) else policy)
        self._exit_action = exit_action or self._exit_process

        self._activity = 0
        self._checks: dict[Check, None] = {}
        self._cleanups: dict[Cleanup, None] = {}
        self._attached: dict[int, AttachmentRecord] = {}

        self._state = WatchdogState.DISARMED
        self._enabled = False
        self._handle: asyncio.TimerHandle | None = None
        self._evaluation: asyncio.Task | None = None
        self._refire = False
        self._shutdown_task: asyncio.Task | None = None

        self._activity_check = self._no_activity
        self.add_check(self._activity_check)
        for check in checks:
            self.add_check(check)
        for cleanup in cleanups:
            self.add_cleanup(cleanup)
        self.add_cleanup(self._exit_action)

        self.start()

    # ─────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> WatchdogState:
        return self._state

    @property
    def activity(self) -> int:
        """Activity events since the last evaluation."""
        return self._activity

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def activity_check(self) -> Check:
        """The built-in check; passes only when no activity was recorded."""
        return self._activity_check

    @property
    def exit_action(self) -> Cleanup:
        return self._exit_action

    @property
    def checks(self) -> list[Check]:
        return list(self._checks)

    @property
    def cleanups(self) -> list[Cleanup]:
        return list(self._cleanups)

    def _no_activity(self) -> bool:
        return self._activity == 0

    def _exit_process(self) -> None:
        exit_process(self._config.exit_code)

    # ─────────────────────────────────────────────────────────────────
    # Timer control
    # ─────────────────────────────────────────────────────────────────

    def reset_timer(self) -> "AutoShutdown":
        """Record activity. The next evaluation will reschedule."""
        self._activity += 1
        return self

    def stop(self) -> "AutoShutdown":
        """Disarm the timer. Safe to call repeatedly."""
        self._enabled = False
        self._refire = False
        self._cancel_timer()
        if self._state is WatchdogState.ARMED:
            self._state = WatchdogState.DISARMED
        logger.debug("watchdog_disarmed")
        return self

    def start(self) -> "AutoShutdown":
        """Arm the timer. Counts as activity."""
        if self._state is WatchdogState.TERMINATED:
            logger.warning("watchdog_start_after_shutdown")
            return self

        self._enabled = True
        self._activity = 1
        self._schedule()
        logger.debug("watchdog_armed", timeout=self._timeout)
        return self

    def _schedule(self) -> None:
        self._cancel_timer()
        self._handle = self._loop.call_later(self._timeout, self._on_timer)
        self._state = WatchdogState.ARMED

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_timer(self) -> None:
        self._handle = None
        self._state = WatchdogState.EVALUATING
        if self._evaluation is not None and not self._evaluation.done():
            # Checks still running; evaluate again once they finish
            self._refire = True
            logger.debug("evaluation_deferred")
            return
        self._evaluation = self._loop.create_task(self._evaluate())

    async def _evaluate(self) -> None:
        """Run the checks; shut down or reschedule."""
        while True:
            try:
                ready = await run_checks(list(self._checks))
            except Exception as e:
                logger.warning("check_failed", error=str(e), exc_info=True)
                ready = False

            if self._state is WatchdogState.TERMINATED:
                return

            if ready:
                await self.shutdown()
                return

            if not self._refire:
                break
            self._refire = False

        if self._handle is not None:
            # start() armed a new timer while the checks were running
            return

        self._activity = 0
        if self._enabled:
            logger.debug("shutdown_rescheduled", timeout=self._timeout)
            self._schedule()
        else:
            self._state = WatchdogState.DISARMED

    # ─────────────────────────────────────────────────────────────────
    # Shutdown
    # ─────────────────────────────────────────────────────────────────

    def shutdown(self) -> asyncio.Future:
        """Run all cleanups, most recently registered first.

        Only the first call starts the sequence; later calls return the
        same in-flight run. The result may be awaited or ignored.
        """
        return asyncio.shield(self._start_shutdown())

    def _start_shutdown(self) -> asyncio.Task:
        if self._shutdown_task is None:
            self._enabled = False
            self._refire = False
            self._cancel_timer()
            self._state = WatchdogState.TERMINATED
            logger.info("shutdown_started", cleanups=len(self._cleanups))
            self._shutdown_task = self._loop.create_task(self._run_shutdown())
            self._shutdown_task.add_done_callback(self._on_shutdown_done)
        return self._shutdown_task

    def _on_shutdown_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("shutdown_aborted", error=repr(task.exception()))

    async def _run_shutdown(self) -> None:
        try:
            await run_cleanups(list(self._cleanups), self._cleanup_policy)
        except CleanupError as e:
            logger.error(
                "cleanup_failed",
                cleanup=getattr(e.action, "__qualname__", repr(e.action)),
                error=e.reason,
                halted=True,
            )
            return
        logger.info("shutdown_complete")

    # ─────────────────────────────────────────────────────────────────
    # Checks and cleanups
    # ─────────────────────────────────────────────────────────────────

    def add_check(self, check: Check) -> "AutoShutdown":
        self._checks[check] = None
        return self

    def remove_check(self, check: Check) -> "AutoShutdown":
        self._checks.pop(check, None)
        return self

    def add_cleanup(self, cleanup: Cleanup) -> "AutoShutdown":
        self._cleanups[cleanup] = None
        return self

    def remove_cleanup(self, cleanup: Cleanup) -> "AutoShutdown":
        self._cleanups.pop(cleanup, None)
        return self

    # ─────────────────────────────────────────────────────────────────
    # Attachments
    # ─────────────────────────────────────────────────────────────────

    def attach(
        self,
        resource: Any,
        checks: Iterable[Check] = (),
        cleanups: Iterable[Cleanup] = (),
        teardown: Iterable[Callable[[], Any]] = (),
    ) -> "AutoShutdown":
        """Bind a resource's checks and cleanups to this watchdog.

        Args:
            resource: Key for a later detach() (compared by identity)
            checks: Checks added to the global set
            cleanups: Cleanups added to the global set
            teardown: Synchronous actions run on detach (e.g. remove listeners)
        """
        if id(resource) in self._attached:
            self.detach(resource)

        record = AttachmentRecord(resource, list(checks), list(cleanups), list(teardown))
        for check in record.checks:
            self.add_check(check)
        for cleanup in record.cleanups:
            self.add_cleanup(cleanup)
        self._attached[id(resource)] = record

        logger.debug(
            "resource_attached",
            resource=type(resource).__name__,
            checks=len(record.checks),
            cleanups=len(record.cleanups),
        )
        return self

    def detach(self, resource: Any) -> "AutoShutdown":
        """Undo attach(). Unknown resources are ignored."""
        record = self._attached.get(id(resource))
        if record is None:
            return self

        for check in record.checks:
            self.remove_check(check)
        for cleanup in record.cleanups:
            self.remove_cleanup(cleanup)
        for action in record.teardown:
            action()
        del self._attached[id(resource)]

        logger.debug("resource_detached", resource=type(resource).__name__)
        return self

    def is_attached(self, resource: Any) -> bool:
        return id(resource) in self._attached

    def attach_resource(self, kind: str, resource: Any, *args: Any, **kwargs: Any) -> "AutoShutdown":
        """Attach a resource through a registered attachment type.

        Raises:
            KeyError: No adapter registered for kind
        """
        from .attach import get_attachment_type

        adapter = get_attachment_type(kind)
        return adapter(self, resource, *args, **kwargs)

    def attach_server(self, server: asyncio.AbstractServer, tracker: Any) -> "AutoShutdown":
        """Attach an asyncio server whose connections are counted by tracker."""
        return self.attach_resource("server", server, tracker)

    def attach_asgi(self, tracker: Any, server: Any = None, stopped: asyncio.Event | None = None) -> "AutoShutdown":
        """Attach an ASGI request tracker and, optionally, the uvicorn server."""
        return self.attach_resource("asgi", tracker, server, stopped)

    # ─────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────

    def status(self) -> dict:
        """Get current watchdog status."""
        return {
            "state": self._state.value,
            "activity": self._activity,
            "timeout_seconds": self._timeout,
            "checks": len(self._checks),
            "cleanups": len(self._cleanups),
            "attachments": len(self._attached),
            "cleanup_policy": self._cleanup_policy.value,
        }
