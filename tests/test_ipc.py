"""Tests for the socket channel and controller/client processes."""

import asyncio
import os
import socket
import sys
import textwrap
from pathlib import Path

import pytest

from autoshutdown.transport import IPC_FD_ENV, SocketChannel, connect_parent, is_child, spawn
from autoshutdown.transport import ipc

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _collector():
    received = []
    arrived = asyncio.Event()

    def handler(message):
        received.append(message)
        arrived.set()

    return received, arrived, handler


class TestSocketChannel:
    """Test JSON-lines messaging over a socket pair."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        left, right = socket.socketpair()
        sender, receiver = SocketChannel.open(left), SocketChannel.open(right)
        received, arrived, handler = _collector()
        receiver.on_message(handler)

        sender.send({"type": "#asc-init", "data": {"n": 1}})
        await asyncio.wait_for(arrived.wait(), 2)

        assert received == [{"type": "#asc-init", "data": {"n": 1}}]
        sender.close()
        receiver.close()

    @pytest.mark.asyncio
    async def test_bad_frames_skipped(self):
        left, right = socket.socketpair()
        left.setblocking(False)
        receiver = SocketChannel.open(right)
        received, arrived, handler = _collector()
        receiver.on_message(handler)

        await asyncio.get_running_loop().sock_sendall(left, b"not json\n\n{\"ok\": 1}\n")
        await asyncio.wait_for(arrived.wait(), 2)

        assert received == [{"ok": 1}]
        left.close()
        await asyncio.wait_for(receiver.wait_closed(), 2)

    @pytest.mark.asyncio
    async def test_handler_error_isolated(self):
        left, right = socket.socketpair()
        sender, receiver = SocketChannel.open(left), SocketChannel.open(right)
        received, arrived, handler = _collector()

        def broken(message):
            raise RuntimeError("handler broke")

        receiver.on_message(broken)
        receiver.on_message(handler)
        sender.send({"type": "x"})
        await asyncio.wait_for(arrived.wait(), 2)

        assert received == [{"type": "x"}]
        sender.close()
        receiver.close()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        left, right = socket.socketpair()
        sender, receiver = SocketChannel.open(left), SocketChannel.open(right)
        received, arrived, handler = _collector()
        late, late_arrived, late_handler = _collector()

        unsubscribe = receiver.on_message(handler)
        receiver.on_message(late_handler)
        unsubscribe()
        unsubscribe()
        sender.send({"type": "x"})
        await asyncio.wait_for(late_arrived.wait(), 2)

        assert received == []
        assert late == [{"type": "x"}]
        sender.close()
        receiver.close()

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        left, right = socket.socketpair()
        channel = SocketChannel.open(left)
        await asyncio.sleep(0.01)

        channel.close()
        await asyncio.wait_for(channel.wait_closed(), 2)

        assert channel.is_closed
        with pytest.raises(ConnectionError):
            channel.send({"type": "x"})
        right.close()


class TestConnectParent:
    """Test child-side channel discovery."""

    @pytest.mark.asyncio
    async def test_not_a_child(self, monkeypatch):
        monkeypatch.setattr(ipc, "_parent", None)

        assert is_child() is False
        assert connect_parent() is None

    @pytest.mark.asyncio
    async def test_inherited_descriptor(self, monkeypatch):
        monkeypatch.setattr(ipc, "_parent", None)
        left, right = socket.socketpair()
        monkeypatch.setenv(IPC_FD_ENV, str(right.detach()))

        assert is_child() is True
        channel = connect_parent()

        assert isinstance(channel, SocketChannel)
        assert connect_parent() is channel
        assert IPC_FD_ENV not in os.environ
        assert is_child() is True

        channel.close()
        left.close()


CHILD_SCRIPT = textwrap.dedent(
    """
    import asyncio
    from autoshutdown import client

    async def main():
        watchdog = client(timeout={timeout})
        {extra}
        data = await watchdog.data
        assert data == {{"answer": 42}}, data
        await asyncio.Event().wait()

    asyncio.run(main())
    """
)


def _child(timeout: float, extra: str = "pass") -> list[str]:
    return [sys.executable, "-c", CHILD_SCRIPT.format(timeout=timeout, extra=extra)]


class TestChildProcess:
    """Test a real controller/client round trip."""

    @pytest.mark.asyncio
    async def test_client_exits_when_idle(self):
        process = await spawn(
            _child(0.1),
            data={"answer": 42},
            cwd=PROJECT_ROOT,
            env={"PYTHONPATH": str(PROJECT_ROOT)},
        )

        await asyncio.wait_for(process.ready, 10)
        code = await asyncio.wait_for(process.wait(), 10)

        assert code == 0

    @pytest.mark.asyncio
    async def test_terminate_message(self):
        """The controller can force exit before the idle timeout."""
        process = await spawn(
            _child(60, extra="watchdog.add_check(lambda: False)"),
            data={"answer": 42},
            cwd=PROJECT_ROOT,
            env={"PYTHONPATH": str(PROJECT_ROOT)},
        )

        await asyncio.wait_for(process.ready, 10)
        process.terminate()
        code = await asyncio.wait_for(process.wait(), 10)

        assert code == 0
