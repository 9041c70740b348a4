"""Shared test fixtures."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import pytest

from autoshutdown import AutoShutdown
from autoshutdown.transport import IPC_FD_ENV


@dataclass
class Harness:
    """A watchdog whose process exit is replaced by a completion future."""

    watchdog: Any
    done: asyncio.Future
    start: float

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start) * 1000

    async def wait(self, timeout: float = 2.0) -> float:
        """Wait for shutdown; returns milliseconds since construction."""
        finished = await asyncio.wait_for(asyncio.shield(self.done), timeout)
        return (finished - self.start) * 1000


class FakeChannel:
    """In-memory ParentChannel."""

    def __init__(self):
        self.sent: list[dict] = []
        self.handlers: list = []

    def send(self, message):
        self.sent.append(message)

    def on_message(self, handler):
        self.handlers.append(handler)
        return lambda: self.handlers.remove(handler) if handler in self.handlers else None

    def deliver(self, message):
        for handler in list(self.handlers):
            handler(message)


@pytest.fixture(autouse=True)
def no_parent_channel(monkeypatch):
    """Tests never run as a spawned child unless they say so."""
    monkeypatch.delenv(IPC_FD_ENV, raising=False)


@pytest.fixture
def make_watchdog():
    """Factory for watchdogs that signal completion instead of exiting.

    Must be called from inside a running event loop.
    """
    created = []

    def factory(cls=AutoShutdown, timeout: float = 0.1, **kwargs) -> Harness:
        loop = asyncio.get_running_loop()
        done = loop.create_future()
        start = time.monotonic()

        watchdog = cls(timeout=timeout, **kwargs)
        watchdog.remove_cleanup(watchdog.exit_action)

        def finished():
            if not done.done():
                done.set_result(time.monotonic())

        watchdog.add_cleanup(finished)
        created.append(watchdog)
        return Harness(watchdog, done, start)

    yield factory

    for watchdog in created:
        watchdog.stop()


@pytest.fixture
def fake_channel():
    return FakeChannel()
