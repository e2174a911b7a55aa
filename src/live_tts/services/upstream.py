"""
Upstream leg of the relay: a websocket connection to Deepgram's live TTS API.

The provider speaks a small JSON control protocol over the socket:

    client -> provider: {"type": "Speak", "text": ...}, Flush, Clear, Close
    provider -> client: binary PCM frames, Metadata, Flushed, Cleared,
                        Warning (and Error on some API versions)

The relay only depends on the ``UpstreamConnection`` protocol below, so
tests (and alternative providers) can supply their own connection objects.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    InvalidStatus,
    WebSocketException,
)

from ..config import Settings
from ..errors import ProviderError, UpstreamConnectionError
from ..schemas.messages import CLEAR, CLOSE, FLUSH, SPEAK, encode_control

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamRequest:
    """Per-session synthesis parameters taken from the downstream request."""

    model: str
    encoding: str = "linear16"
    sample_rate: int = 48000
    container: str = "none"

    def query_params(self) -> dict[str, str]:
        return {
            "model": self.model,
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "container": self.container,
        }


class UpstreamConnection(Protocol):
    """What the relay needs from a provider connection."""

    supports_clear: bool

    @property
    def closed(self) -> bool: ...

    @property
    def close_code(self) -> Optional[int]: ...

    @property
    def close_reason(self) -> str: ...

    async def send_text(self, text: str) -> None: ...

    async def flush(self) -> None: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...

    def receive(self) -> AsyncIterator[str | bytes]: ...


UpstreamFactory = Callable[[UpstreamRequest], Awaitable[UpstreamConnection]]


def build_upstream_url(base_url: str, request: UpstreamRequest) -> str:
    """Append the synthesis parameters to the provider base URL."""

    return str(httpx.URL(base_url, params=request.query_params()))


class DeepgramSpeakConnection:
    """Thin wrapper around an open websocket to the Deepgram speak endpoint."""

    def __init__(self, websocket: ClientConnection, *, supports_clear: bool = True):
        self._ws = websocket
        self.supports_clear = supports_clear
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_code(self) -> Optional[int]:
        return self._ws.close_code

    @property
    def close_reason(self) -> str:
        return self._ws.close_reason or ""

    async def send_text(self, text: str) -> None:
        await self._ws.send(encode_control(SPEAK, text=text))

    async def flush(self) -> None:
        await self._ws.send(encode_control(FLUSH))

    async def clear(self) -> None:
        if not self.supports_clear:
            logger.debug("Clear requested but not supported upstream; ignoring")
            return
        await self._ws.send(encode_control(CLEAR))

    async def close(self) -> None:
        """Ask the provider to close, then close the socket. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.send(encode_control(CLOSE))
        except ConnectionClosed:
            pass
        await self._ws.close()

    async def receive(self) -> AsyncIterator[str | bytes]:
        """
        Yield provider frames until the socket closes.

        A clean or abnormal close simply ends the iteration (the relay mirrors
        ``close_code`` downstream); transport failures become ``ProviderError``.
        """
        try:
            async for frame in self._ws:
                yield frame
        except ConnectionClosedError as exc:
            logger.info(f"Deepgram connection closed abnormally: {exc}")
        except (OSError, WebSocketException) as exc:
            raise ProviderError(
                f"Deepgram connection error: {exc}"
            ) from exc


class DeepgramSpeakConnector:
    """Factory opening one ``DeepgramSpeakConnection`` per relay session."""

    def __init__(self, settings: Settings):
        self._settings = settings

    async def __call__(self, request: UpstreamRequest) -> DeepgramSpeakConnection:
        settings = self._settings
        if not settings.has_api_key():
            raise UpstreamConnectionError(
                "Failed to establish proxy connection",
                details="DEEPGRAM_API_KEY is not configured on the server",
            )

        url = build_upstream_url(settings.deepgram_tts_url, request)
        logger.info(
            f"Connecting to Deepgram TTS: model={request.model}, "
            f"encoding={request.encoding}, sample_rate={request.sample_rate}"
        )
        headers = {
            "Authorization": f"Token {settings.deepgram_api_key.get_secret_value()}"
        }

        try:
            websocket = await connect(
                url,
                additional_headers=headers,
                open_timeout=settings.upstream_open_timeout,
                max_size=None,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in (401, 403):
                details = "Check that DEEPGRAM_API_KEY is valid"
            else:
                details = None
            logger.error(f"Deepgram rejected the TTS connection (HTTP {status})")
            raise UpstreamConnectionError(
                f"Deepgram rejected the connection (HTTP {status})",
                details=details,
            ) from exc
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.error(f"Failed to connect to Deepgram TTS: {exc}")
            raise UpstreamConnectionError(
                "Failed to establish proxy connection"
            ) from exc

        logger.info("✓ Connected to Deepgram TTS API")
        return DeepgramSpeakConnection(
            websocket, supports_clear=settings.deepgram_clear_enabled
        )


__all__ = [
    "DeepgramSpeakConnection",
    "DeepgramSpeakConnector",
    "UpstreamConnection",
    "UpstreamFactory",
    "UpstreamRequest",
    "build_upstream_url",
]
