"""Tests for the ASGI attachment and serve helper."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from fastapi import FastAPI

import autoshutdown.serve as serve_module
from autoshutdown import ActivityMiddleware, RequestTracker
from autoshutdown.attach import CONNECT
from autoshutdown.serve import serve


def _app(tracker: RequestTracker) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ActivityMiddleware, tracker=tracker)
    app.state.release = asyncio.Event()

    @app.get("/active")
    async def active():
        return {"active": tracker.active}

    @app.get("/slow")
    async def slow():
        await app.state.release.wait()
        return {"ok": True}

    return app


def _client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestActivityMiddleware:
    """Test request tracking."""

    @pytest.mark.asyncio
    async def test_counts_in_flight_requests(self):
        tracker = RequestTracker()
        app = _app(tracker)

        async with _client(app) as client:
            response = await client.get("/active")

        assert response.json() == {"active": 1}
        assert tracker.active == 0

    @pytest.mark.asyncio
    async def test_requests_reset_timer(self, make_watchdog):
        h = make_watchdog(timeout=10)
        tracker = RequestTracker()
        app = _app(tracker)
        h.watchdog.attach_asgi(tracker)

        async with _client(app) as client:
            await client.get("/active")

        assert h.watchdog.activity == 3  # start + connect + disconnect


class TestAsgiAttachment:
    """Test attaching ASGI apps."""

    @pytest.mark.asyncio
    async def test_in_flight_request_blocks_shutdown(self, make_watchdog):
        h = make_watchdog()
        tracker = RequestTracker()
        app = _app(tracker)
        h.watchdog.attach_asgi(tracker)

        async with _client(app) as client:
            request = asyncio.create_task(client.get("/slow"))
            await asyncio.sleep(0.35)

            assert tracker.active == 1
            assert not h.done.done()

            app.state.release.set()
            response = await request

        assert response.status_code == 200
        await h.wait()

    @pytest.mark.asyncio
    async def test_cleanup_stops_server(self, make_watchdog):
        """The cleanup flags the server and waits until it stopped."""
        h = make_watchdog(timeout=10)
        tracker = RequestTracker()
        server = SimpleNamespace(should_exit=False)
        stopped = asyncio.Event()
        h.watchdog.attach_asgi(tracker, server, stopped)

        shutdown = asyncio.ensure_future(h.watchdog.shutdown())
        await asyncio.sleep(0.01)

        assert server.should_exit is True
        assert not shutdown.done()
        assert not h.done.done()

        stopped.set()
        await shutdown
        assert h.done.done()

    @pytest.mark.asyncio
    async def test_detach(self, make_watchdog):
        h = make_watchdog(timeout=10)
        tracker = RequestTracker()
        h.watchdog.attach_asgi(tracker)

        h.watchdog.detach(tracker)

        assert tracker.listener_count(CONNECT) == 0
        assert h.watchdog.status()["attachments"] == 0


class FakeServer:
    """Stands in for uvicorn.Server."""

    def __init__(self, config):
        self.config = config
        self.should_exit = False

    async def serve(self):
        while not self.should_exit:
            await asyncio.sleep(0.01)


class TestServe:
    """Test the uvicorn serve helper."""

    @pytest.mark.asyncio
    async def test_idle_app_stops(self, make_watchdog, monkeypatch):
        """An idle served app stops the server, then finishes shutdown."""
        monkeypatch.setattr(serve_module.uvicorn, "Server", FakeServer)
        h = make_watchdog()
        app = FastAPI()

        await asyncio.wait_for(serve(app, h.watchdog, host="127.0.0.1", port=18231), 2)
        await h.wait()

        assert len(app.user_middleware) == 1
        assert h.watchdog.status()["attachments"] == 0

    @pytest.mark.asyncio
    async def test_returns_after_all_cleanups(self, make_watchdog, monkeypatch):
        """serve() returns only once the cleanups behind the server have run."""
        monkeypatch.setattr(serve_module.uvicorn, "Server", FakeServer)
        h = make_watchdog()
        order = []

        async def flush():
            await asyncio.sleep(0.05)
            order.append("flush")

        h.watchdog.add_cleanup(flush)

        await asyncio.wait_for(serve(FastAPI(), h.watchdog, host="127.0.0.1", port=18232), 2)

        assert order == ["flush"]
        assert h.done.done()
