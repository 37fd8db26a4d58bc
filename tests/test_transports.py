"""
Transport Wiring Tests
======================

Verify that the stdio and SSE transports connect sessions to the
broadcaster, the ClientTracker and the poller. The MCP session loop and the
SSE/stdio streams are stubbed.
"""

from contextlib import asynccontextmanager
from unittest.mock import patch

import anyio
import pytest
from starlette.requests import Request
from starlette.responses import Response

from src.mcp_imap_smtp.config import Config
from src.mcp_imap_smtp.credentials import Credentials
from src.mcp_imap_smtp.server import SSE_PATH, create_server

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakePoller:
    def __init__(self, broadcaster):
        self.broadcaster = broadcaster
        self.starts = 0
        self.stops = 0
        self.running = False

    async def start(self):
        if not self.running:
            self.starts += 1
            self.running = True

    def stop(self):
        if self.running:
            self.stops += 1
            self.running = False

    async def check_for_new_mail(self):
        return 0


@asynccontextmanager
async def session_streams():
    read_send, read_receive = anyio.create_memory_object_stream(10)
    write_send, write_receive = anyio.create_memory_object_stream(10)
    try:
        yield read_receive, write_send
    finally:
        for stream in (read_send, read_receive, write_send, write_receive):
            await stream.aclose()


class FakeSseTransport:
    def __init__(self, endpoint):
        self.endpoint = endpoint

    def connect_sse(self, scope, receive, send):
        return session_streams()

    async def handle_post_message(self, scope, receive, send):
        pass


async def _receive():
    return {"type": "http.disconnect"}


async def _send(message):
    pass


def sse_request():
    return Request({"type": "http", "method": "GET", "path": SSE_PATH, "headers": []}, _receive, _send)


@pytest.fixture
def server():
    config = Config(
        imap=Credentials(username="me@example.com", password="x", server="imap.example.com", port=993),
        smtp=Credentials(username="me@example.com", password="x", server="smtp.example.com", port=587),
        my_email="me@example.com",
    )
    server = create_server(config)
    with patch.object(server, "create_poller", side_effect=FakePoller):
        yield server


@pytest.fixture
def app(server):
    with patch("src.mcp_imap_smtp.server.SseServerTransport", FakeSseTransport):
        yield server.create_http_app()


def sse_endpoint(app):
    return next(route.endpoint for route in app.routes if getattr(route, "path", None) == SSE_PATH)


# =============================================================================
# SSE (MULTI-CLIENT)
# =============================================================================

class TestSseTransport:

    async def test_session_registered_and_counted(self, server, app):
        """
        Contract: LifecycleContract
        Enforces: POST-LIFECYCLE-01, POST-LIFECYCLE-02
        """
        observed = {}

        async def run(read_stream, write_stream, options):
            observed["subscribers"] = app.state.broadcaster.subscriber_count
            observed["clients"] = app.state.tracker.client_count
            observed["polling"] = app.state.poller.running

        with patch.object(server._server, "run", new=run):
            response = await sse_endpoint(app)(sse_request())

        assert isinstance(response, Response)
        assert observed == {"subscribers": 1, "clients": 1, "polling": True}
        assert app.state.broadcaster.subscriber_count == 0
        assert app.state.tracker.client_count == 0
        assert app.state.poller.stops == 1

    async def test_concurrent_sessions_share_one_poller(self, server, app):
        release = anyio.Event()

        async def run(read_stream, write_stream, options):
            await release.wait()

        with patch.object(server._server, "run", new=run):
            async with anyio.create_task_group() as tg:
                tg.start_soon(sse_endpoint(app), sse_request())
                tg.start_soon(sse_endpoint(app), sse_request())

                with anyio.fail_after(2):
                    while app.state.tracker.client_count < 2:
                        await anyio.sleep(0.005)

                assert app.state.broadcaster.subscriber_count == 2
                assert app.state.poller.starts == 1
                release.set()

        assert app.state.tracker.client_count == 0
        assert app.state.broadcaster.subscriber_count == 0
        assert app.state.poller.stops == 1

    async def test_failed_session_still_disconnects(self, server, app):
        async def run(read_stream, write_stream, options):
            raise RuntimeError("session crashed")

        with patch.object(server._server, "run", new=run):
            with pytest.raises(RuntimeError):
                await sse_endpoint(app)(sse_request())

        assert app.state.tracker.client_count == 0
        assert app.state.broadcaster.subscriber_count == 0
        assert app.state.poller.running is False

    async def test_lifespan_stops_poller(self, app):
        async with app.router.lifespan_context(app):
            await app.state.poller.start()
            assert app.state.poller.running is True

        assert app.state.poller.running is False
        assert app.state.poller.stops == 1


# =============================================================================
# STDIO (SINGLE CLIENT)
# =============================================================================

class TestStdioTransport:

    async def test_poller_runs_for_session(self, server):
        observed = {}
        pollers = []

        def create_poller(broadcaster):
            pollers.append(FakePoller(broadcaster))
            return pollers[-1]

        async def run(read_stream, write_stream, options):
            observed["polling"] = pollers[0].running
            observed["subscribers"] = pollers[0].broadcaster.subscriber_count

        with patch("src.mcp_imap_smtp.server.stdio_server", session_streams), \
                patch.object(server, "create_poller", side_effect=create_poller), \
                patch.object(server._server, "run", new=run):
            await server.run_stdio()

        assert observed == {"polling": True, "subscribers": 1}
        assert pollers[0].stops == 1
        assert pollers[0].broadcaster.subscriber_count == 0

    async def test_poller_stopped_when_session_fails(self, server):
        pollers = []

        def create_poller(broadcaster):
            pollers.append(FakePoller(broadcaster))
            return pollers[-1]

        async def run(read_stream, write_stream, options):
            raise RuntimeError("stdin closed")

        with patch("src.mcp_imap_smtp.server.stdio_server", session_streams), \
                patch.object(server, "create_poller", side_effect=create_poller), \
                patch.object(server._server, "run", new=run):
            with pytest.raises(RuntimeError):
                await server.run_stdio()

        assert pollers[0].running is False
        assert pollers[0].stops == 1
