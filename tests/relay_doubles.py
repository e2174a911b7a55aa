"""In-memory stand-ins for the two websocket legs of a relay session."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Optional

from live_tts.services.upstream import UpstreamRequest

_END = object()


class Hangup:
    """Scripted frame: the provider closes its socket with ``code``."""

    def __init__(self, code: Optional[int] = 1000, reason: str = ""):
        self.code = code
        self.reason = reason


class FakeUpstream:
    """Scripted provider connection.

    ``frames`` are delivered as soon as the relay starts reading; ``on_flush``
    and ``on_clear`` frames are delivered in response to those commands.
    """

    def __init__(
        self,
        frames: Iterable[Any] = (),
        *,
        on_flush: Iterable[Any] = (),
        on_clear: Iterable[Any] = (),
        supports_clear: bool = True,
        close_code: Optional[int] = 1000,
        close_reason: str = "",
    ) -> None:
        self.supports_clear = supports_clear
        self.sent: list[dict[str, Any]] = []
        self.close_calls = 0
        self._closed = False
        self._close_code = close_code
        self._close_reason = close_reason
        self._initial = list(frames)
        self._on_flush = list(on_flush)
        self._on_clear = list(on_clear)
        self._frames: Optional[asyncio.Queue] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_code(self) -> Optional[int]:
        return self._close_code

    @property
    def close_reason(self) -> str:
        return self._close_reason

    def _queue(self) -> asyncio.Queue:
        if self._frames is None:
            self._frames = asyncio.Queue()
            for frame in self._initial:
                self._frames.put_nowait(frame)
        return self._frames

    async def send_text(self, text: str) -> None:
        self.sent.append({"type": "Speak", "text": text})

    async def flush(self) -> None:
        self.sent.append({"type": "Flush"})
        for frame in self._on_flush:
            self._queue().put_nowait(frame)

    async def clear(self) -> None:
        if not self.supports_clear:
            return
        self.sent.append({"type": "Clear"})
        for frame in self._on_clear:
            self._queue().put_nowait(frame)

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self.sent.append({"type": "Close"})
        self._queue().put_nowait(_END)

    def push(self, frame: Any) -> None:
        self._queue().put_nowait(frame)

    def hang_up(self, code: Optional[int] = 1000, reason: str = "") -> None:
        """Simulate the provider closing its side of the socket."""
        self._queue().put_nowait(Hangup(code, reason))

    async def receive(self):
        queue = self._queue()
        while True:
            frame = await queue.get()
            if frame is _END:
                return
            if isinstance(frame, Hangup):
                self._close_code = frame.code
                self._close_reason = frame.reason
                return
            if isinstance(frame, BaseException):
                raise frame
            yield frame


class UpstreamFactory:
    """Records requests and hands out upstream connections built by ``build``."""

    def __init__(
        self,
        build: Callable[[], FakeUpstream] = FakeUpstream,
        *,
        error: Optional[BaseException] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self._build = build
        self._error = error
        self._gate = gate
        self.requests: list[UpstreamRequest] = []
        self.connections: list[FakeUpstream] = []

    async def __call__(self, request: UpstreamRequest) -> FakeUpstream:
        self.requests.append(request)
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        connection = self._build()
        self.connections.append(connection)
        return connection


class FakeDownstream:
    """Client socket driven by the test through ``client_sends``/``client_disconnects``."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[Any] = []
        self.close_calls: list[int] = []

    def client_sends(self, payload: Any) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def client_sends_bytes(self, data: bytes) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def client_disconnects(self, code: int = 1000) -> None:
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def receive(self) -> dict[str, Any]:
        return await self.incoming.get()

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_calls.append(code)

    @property
    def json_messages(self) -> list[dict[str, Any]]:
        return [item for item in self.sent if isinstance(item, dict)]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [item for item in self.json_messages if item.get("type") == message_type]


class ScriptedRelaySocket:
    """Plays the server side of ``/tts/stream``: ``Open`` first, then ``on_speak``."""

    def __init__(self, on_speak=(), *, final_code: int | None = None):
        self.on_speak = list(on_speak)
        self.final_code = final_code
        self.sent: list[dict] = []
        self.closed_with: list[tuple[int, str]] = []
        self.close_code: int | None = None
        self._frames: asyncio.Queue = asyncio.Queue()
        self._frames.put_nowait(json.dumps({"type": "Open", "message": "Connected to Deepgram TTS"}))

    async def send(self, message: str) -> None:
        payload = json.loads(message)
        self.sent.append(payload)
        if payload["type"] == "Speak":
            for frame in self.on_speak:
                self._frames.put_nowait(frame)
            if self.final_code is not None:
                self._frames.put_nowait(None)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with.append((code, reason))
        if self.close_code is None:
            self.close_code = code
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._frames.get()
        if frame is None:
            if self.close_code is None:
                self.close_code = self.final_code
            raise StopAsyncIteration
        return frame


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
