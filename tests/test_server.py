from __future__ import annotations

import asyncio
import socket

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from live_tts import main as main_module
from live_tts.app import create_app
from live_tts.config import Settings
from live_tts.main import RelayServer, build_server
from relay_doubles import UpstreamFactory, wait_until

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def listening_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


async def test_shutdown_closes_open_sessions_with_going_away(listening_socket):
    settings = Settings(
        deepgram_api_key="dg-test-key", host="127.0.0.1", shutdown_grace_seconds=2.0
    )
    factory = UpstreamFactory()
    app = create_app(settings, upstream_factory=factory)
    server = build_server(settings, app)
    registry = app.state.session_registry
    port = listening_socket.getsockname()[1]

    serve_task = asyncio.create_task(server.serve(sockets=[listening_socket]))
    try:
        await wait_until(lambda: server.started, timeout=5.0)

        async with connect(f"ws://127.0.0.1:{port}/tts/stream") as ws:
            opened = await asyncio.wait_for(ws.recv(), timeout=2.0)
            assert '"type":"Open"' in opened
            assert len(registry) == 1

            server.should_exit = True
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(ws.recv(), timeout=5.0)

        assert ws.close_code == 1001
        await asyncio.wait_for(serve_task, timeout=5.0)
    finally:
        if not serve_task.done():
            server.force_exit = True
            server.should_exit = True
            await asyncio.wait_for(serve_task, timeout=5.0)

    assert len(registry) == 0
    assert factory.connections[0].closed


async def test_shutdown_with_no_sessions_defers_to_uvicorn(monkeypatch):
    settings = Settings(deepgram_api_key="dg-test-key")
    app = create_app(settings, upstream_factory=UpstreamFactory())
    server = build_server(settings, app)
    calls = []

    async def parent_shutdown(self, sockets=None):
        calls.append(sockets)

    monkeypatch.setattr(main_module.uvicorn.Server, "shutdown", parent_shutdown)

    await server.shutdown()

    assert isinstance(server, RelayServer)
    assert server.registry is app.state.session_registry
    assert server.config.timeout_graceful_shutdown == 10
    assert calls == [None]


def test_main_exits_without_api_key():
    with pytest.raises(SystemExit) as excinfo:
        main_module.main()

    assert excinfo.value.code == 1
