"""
Async client for the relay's ``/tts/stream`` endpoint.

Each call to ``generate`` opens a websocket, waits for ``Open``, sends the
text, collects binary audio until ``Flushed`` and hands the assembled WAV to
the ``GenerationQueue``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import PROVIDER_WARNING
from ..schemas.messages import CLEAR, SPEAK, encode_control
from .generation_queue import Generation, GenerationQueue

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "ws://localhost:8081"
DEFAULT_ENDPOINT = "/tts/stream"
DEFAULT_MODEL = "aura-asteria-en"


class LiveTTSClient:
    """Runs one generation at a time against the relay server."""

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        queue: Optional[GenerationQueue] = None,
        open_timeout: float = 10.0,
    ):
        self.server_url = server_url.rstrip("/")
        self.endpoint = endpoint
        self.queue = queue or GenerationQueue()
        self.open_timeout = open_timeout
        self._websocket: Optional[ClientConnection] = None

    def stream_url(self, model: str) -> str:
        params = {
            "model": model,
            "encoding": "linear16",
            "sample_rate": str(self.queue.sample_rate),
        }
        return str(httpx.URL(f"{self.server_url}{self.endpoint}", params=params))

    async def generate(self, text: str, model: str = DEFAULT_MODEL) -> Generation:
        """Synthesize ``text``; raises ``RelayValidationError`` for invalid input."""
        generation = self.queue.submit(text, model)
        url = self.stream_url(model)
        logger.info(f"Connecting to WebSocket: {url}")

        close_code: Optional[int] = None
        try:
            async with connect(url, open_timeout=self.open_timeout) as websocket:
                self._websocket = websocket
                try:
                    await self._relay(websocket, generation)
                except ConnectionClosed as exc:
                    logger.info(f"WebSocket closed: {exc}")
                close_code = websocket.close_code
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.error(f"WebSocket error: {exc}")
            if self.queue.active is generation:
                self.queue.on_error(f"Failed to connect: {exc}")
            return generation
        finally:
            self._websocket = None

        if self.queue.active is generation:
            self.queue.on_close(close_code)
        return generation

    async def cancel(self) -> Optional[Generation]:
        """Send ``Clear`` for the in-flight generation and discard its audio."""
        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.send(encode_control(CLEAR))
            except ConnectionClosed:
                logger.debug("Connection already closed; nothing to clear")
        return self.queue.cancel()

    async def _relay(self, websocket: ClientConnection, generation: Generation) -> None:
        async for frame in websocket:
            if self.queue.active is not generation:
                # Cancelled locally; stop listening to this generation's socket.
                await websocket.close(1000, "Generation cancelled")
                break

            if isinstance(frame, bytes):
                logger.debug(f"Received audio chunk: {len(frame)} bytes")
                self.queue.on_audio_chunk(frame)
                continue

            try:
                message = json.loads(frame)
            except ValueError as exc:
                logger.error(f"Failed to parse message: {exc}")
                continue

            if await self._handle_message(websocket, generation, message):
                break

    async def _handle_message(
        self,
        websocket: ClientConnection,
        generation: Generation,
        message: Dict[str, Any],
    ) -> bool:
        """Apply one server message; returns True once the socket should close."""
        message_type = message.get("type")
        logger.debug(f"Received message: {message_type}")

        if message_type == "Open":
            self.queue.on_open()
            await websocket.send(encode_control(SPEAK, text=generation.text))
        elif message_type == "Metadata":
            self.queue.on_metadata(message)
        elif message_type == "Flushed":
            self.queue.on_complete()
            await websocket.close(1000, "Generation complete")
            return True
        elif message_type == "Cleared":
            self.queue.on_cleared()
            await websocket.close(1000, "Generation cleared")
            return True
        elif message_type == "Close":
            logger.info("Server closed connection")
            await websocket.close(1000, "Server closed")
            return True
        elif message_type == "Error":
            error = message.get("error") or {}
            if error.get("code") == PROVIDER_WARNING:
                # The relay keeps the session open; audio may still follow.
                self.queue.on_warning(error.get("message") or "Deepgram warning")
                return False
            self.queue.on_error(error.get("message") or "An unknown error occurred")
            await websocket.close(1000, "Client closing due to error")
            return True
        else:
            logger.warning(f"Unknown message type: {message_type}")
        return False


__all__ = ["DEFAULT_MODEL", "DEFAULT_SERVER_URL", "LiveTTSClient"]
