"""
Relay session: bridges one client websocket and one Deepgram TTS websocket.

State machine:

    CONNECTING -> AWAITING_UPSTREAM_READY -> ACTIVE -> CLOSING -> CLOSED

The downstream reader starts as soon as the upstream handshake begins, so a
``Speak`` that arrives before the provider is ready is answered with a
``CONNECTION_FAILED`` error instead of being queued. Every other forwarding
rule is decided by ``self.state``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

from pydantic import BaseModel

from ..errors import (
    PROVIDER_WARNING,
    MessageParsingError,
    ProviderError,
    RelayError,
    RelayValidationError,
    UpstreamConnectionError,
)
from ..schemas.messages import (
    CLEAR,
    CLOSE,
    FLUSH,
    SPEAK,
    ClearedMessage,
    CloseMessage,
    FlushedMessage,
    MetadataMessage,
    OpenMessage,
    dump_message,
)
from .upstream import UpstreamConnection, UpstreamFactory, UpstreamRequest

if TYPE_CHECKING:
    from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
SERVER_ERROR = 1011
# Codes that must never be sent in a close frame.
RESERVED_CLOSE_CODES = frozenset({1004, 1005, 1006, 1015})


def mirror_close_code(code: Optional[int]) -> int:
    """Map a close code from one leg to a code that is legal to send on the other."""

    if code is None or not 1000 <= code <= 4999 or code in RESERVED_CLOSE_CODES:
        return NORMAL_CLOSURE
    return code


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_UPSTREAM_READY = "awaiting_upstream_ready"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Downstream(Protocol):
    """The subset of ``fastapi.WebSocket`` used by the relay."""

    async def receive(self) -> dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...

    async def send_bytes(self, data: bytes) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class RelaySession:
    """Owns exactly one downstream socket and one upstream connection."""

    def __init__(
        self,
        downstream: Downstream,
        upstream_factory: UpstreamFactory,
        request: UpstreamRequest,
        registry: "SessionRegistry",
    ):
        self.session_id = uuid.uuid4().hex[:8]
        self.request = request
        self.state = SessionState.CONNECTING
        self._downstream = downstream
        self._upstream_factory = upstream_factory
        self._registry = registry
        self._upstream: Optional[UpstreamConnection] = None
        self._downstream_closed = False
        self._upstream_closed = False
        self._finished = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    @property
    def model(self) -> str:
        return self.request.model

    @property
    def ready(self) -> bool:
        return self.state is SessionState.ACTIVE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Relay until either leg closes. The downstream must already be accepted."""
        self._registry.add(self)
        try:
            await self._relay()
        finally:
            self.state = SessionState.CLOSED
            for task in self._tasks:
                if not task.done():
                    task.cancel()
            try:
                await self._close_upstream()
                await self._close_downstream(NORMAL_CLOSURE)
            finally:
                self._registry.discard(self)
                self._finished.set()
                logger.info(f"[{self.session_id}] Relay session closed")

    async def shutdown(self, reason: str = "Server shutting down") -> None:
        """Close both legs on behalf of the server and wait for ``run`` to return."""
        if self.state is not SessionState.CLOSED:
            self.state = SessionState.CLOSING
            await self._close_downstream(GOING_AWAY, reason)
            await self._close_upstream()
        await self._finished.wait()

    async def _relay(self) -> None:
        self.state = SessionState.AWAITING_UPSTREAM_READY
        downstream_task = self._spawn(self._pump_downstream(), "downstream")
        connect_task = self._spawn(self._upstream_factory(self.request), "connect")

        await asyncio.wait(
            {downstream_task, connect_task}, return_when=asyncio.FIRST_COMPLETED
        )

        if not connect_task.done():
            # Client left (or asked to close) while the handshake was running.
            connect_task.cancel()
        await asyncio.gather(connect_task, return_exceptions=True)

        if connect_task.cancelled():
            await self._finish_task(downstream_task)
            return

        error = connect_task.exception()
        if error is not None:
            await self._finish_task(downstream_task, cancel=True)
            if isinstance(error, UpstreamConnectionError):
                logger.warning(f"[{self.session_id}] Upstream connection failed: {error}")
                await self._send(error.to_message())
            else:
                logger.error(
                    f"[{self.session_id}] Error setting up proxy: {error}",
                    exc_info=error,
                )
                await self._send(
                    UpstreamConnectionError(
                        "Failed to establish proxy connection"
                    ).to_message()
                )
            await self._close_downstream(SERVER_ERROR, "Upstream connection failed")
            return

        self._upstream = connect_task.result()
        if downstream_task.done() or self.state is not SessionState.AWAITING_UPSTREAM_READY:
            await self._finish_task(downstream_task)
            return

        self.state = SessionState.ACTIVE
        logger.info(f"[{self.session_id}] Upstream ready (model={self.model})")
        await self._send(OpenMessage())

        upstream_task = self._spawn(self._pump_upstream(self._upstream), "upstream")
        done, pending = await asyncio.wait(
            {downstream_task, upstream_task}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            await self._finish_task(task, cancel=True)
        for task in done:
            await self._finish_task(task)

    def _spawn(self, coro, role: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(f"relay-{role}-{self.session_id}")
        self._tasks.add(task)
        return task

    async def _finish_task(self, task: asyncio.Task, *, cancel: bool = False) -> None:
        if cancel and not task.done():
            task.cancel()
        with suppress(asyncio.CancelledError):
            try:
                await task
            except Exception as exc:
                logger.error(
                    f"[{self.session_id}] Relay task {task.get_name()} failed: {exc}",
                    exc_info=exc,
                )

    # ------------------------------------------------------------------
    # Downstream -> upstream
    # ------------------------------------------------------------------

    async def _pump_downstream(self) -> None:
        while self.state not in (SessionState.CLOSING, SessionState.CLOSED):
            message = await self._downstream.receive()
            if message["type"] == "websocket.disconnect":
                code = message.get("code", NORMAL_CLOSURE)
                logger.info(f"[{self.session_id}] Client disconnected: {code}")
                self._downstream_closed = True
                return

            text = message.get("text")
            if text is None:
                logger.debug(
                    f"[{self.session_id}] Ignoring binary frame from client "
                    f"({len(message.get('bytes') or b'')} bytes)"
                )
                continue

            try:
                await self._handle_client_text(text)
            except RelayError as exc:
                logger.info(f"[{self.session_id}] Rejected client message: {exc}")
                await self._send(exc.to_message())
            except Exception as exc:
                logger.error(
                    f"[{self.session_id}] Failed to handle client message: {exc}",
                    exc_info=True,
                )
                await self._send(RelayError(f"Failed to process message: {exc}").to_message())

    async def _handle_client_text(self, text: str) -> None:
        payload = parse_client_message(text)
        message_type = payload.get("type")

        if message_type == SPEAK:
            await self._handle_speak(payload)
        elif message_type == FLUSH:
            if self._upstream_live():
                await self._upstream.flush()
        elif message_type == CLEAR:
            if self._upstream_live():
                await self._upstream.clear()
        elif message_type == CLOSE:
            logger.info(f"[{self.session_id}] Client requested close")
            self.state = SessionState.CLOSING
            await self._close_upstream()
            await self._close_downstream(NORMAL_CLOSURE, "Client requested close")
        else:
            logger.info(f"[{self.session_id}] Ignoring unrecognized message type: {message_type!r}")

    async def _handle_speak(self, payload: dict[str, Any]) -> None:
        if self.state is not SessionState.ACTIVE or not self._upstream_live():
            raise UpstreamConnectionError(
                "Not connected to Deepgram yet; wait for the Open message before sending text"
            )
        text = payload.get("text")
        if not isinstance(text, str) or not text:
            raise RelayValidationError(
                "Speak message requires a non-empty 'text' field"
            )
        logger.debug(f"[{self.session_id}] Forwarding {len(text)} chars upstream")
        await self._upstream.send_text(text)
        await self._upstream.flush()

    def _upstream_live(self) -> bool:
        return self._upstream is not None and not self._upstream_closed

    # ------------------------------------------------------------------
    # Upstream -> downstream
    # ------------------------------------------------------------------

    async def _pump_upstream(self, upstream: UpstreamConnection) -> None:
        try:
            async for frame in upstream.receive():
                try:
                    await self._forward_upstream_frame(frame)
                except ProviderError:
                    raise
                except Exception as exc:
                    logger.error(
                        f"[{self.session_id}] Failed to forward upstream frame: {exc}",
                        exc_info=True,
                    )
                    await self._send(
                        RelayError(f"Failed to forward provider message: {exc}").to_message()
                    )
        except ProviderError as exc:
            logger.error(f"[{self.session_id}] Deepgram error: {exc}")
            self.state = SessionState.CLOSING
            await self._send(exc.to_message())
            await self._close_upstream()
            await self._close_downstream(SERVER_ERROR, "Provider error")
            return

        if self.state is SessionState.ACTIVE:
            code = upstream.close_code
            reason = upstream.close_reason
            logger.info(f"[{self.session_id}] Deepgram connection closed: {code} {reason}")
            self.state = SessionState.CLOSING
            self._upstream_closed = True
            await self._send(CloseMessage(message=reason or "Deepgram connection closed"))
            await self._close_downstream(mirror_close_code(code), reason)

    async def _forward_upstream_frame(self, frame: str | bytes) -> None:
        if isinstance(frame, (bytes, bytearray)):
            await self._send_bytes(bytes(frame))
            return

        try:
            payload = json.loads(frame)
        except ValueError:
            logger.warning(f"[{self.session_id}] Dropping non-JSON text frame from Deepgram")
            return
        if not isinstance(payload, dict):
            logger.warning(f"[{self.session_id}] Dropping unexpected Deepgram frame: {payload!r}")
            return

        message_type = payload.get("type")
        if message_type == "Metadata":
            await self._send(MetadataMessage.model_validate(payload))
        elif message_type == "Flushed":
            await self._send(FlushedMessage())
        elif message_type == "Cleared":
            await self._send(ClearedMessage(sequence_id=payload.get("sequence_id")))
        elif message_type == "Warning":
            description = payload.get("description") or "Deepgram warning"
            logger.warning(f"[{self.session_id}] Deepgram warning: {description}")
            await self._send(
                ProviderError(
                    description, code=PROVIDER_WARNING, details=payload.get("code")
                ).to_message()
            )
        elif message_type == "Error":
            raise ProviderError(
                payload.get("description")
                or payload.get("message")
                or "Deepgram reported an error",
                details=payload.get("code") or payload.get("err_code"),
            )
        else:
            logger.debug(f"[{self.session_id}] Ignoring Deepgram message type: {message_type!r}")

    # ------------------------------------------------------------------
    # Socket helpers
    # ------------------------------------------------------------------

    async def _send(self, message: BaseModel) -> None:
        if self._downstream_closed:
            return
        try:
            await self._downstream.send_text(dump_message(message))
        except Exception as exc:
            logger.warning(f"[{self.session_id}] Error sending to client: {exc}")
            self._downstream_closed = True

    async def _send_bytes(self, data: bytes) -> None:
        if self._downstream_closed:
            return
        try:
            await self._downstream.send_bytes(data)
        except Exception as exc:
            logger.warning(f"[{self.session_id}] Error sending audio to client: {exc}")
            self._downstream_closed = True

    async def _close_downstream(self, code: int, reason: Optional[str] = None) -> None:
        if self._downstream_closed:
            return
        self._downstream_closed = True
        try:
            await self._downstream.close(code=code, reason=reason)
        except Exception as exc:
            logger.debug(f"[{self.session_id}] Client socket already closed: {exc}")

    async def _close_upstream(self) -> None:
        if self._upstream is None or self._upstream_closed:
            return
        self._upstream_closed = True
        try:
            await self._upstream.close()
        except Exception as exc:
            logger.warning(f"[{self.session_id}] Error closing Deepgram connection: {exc}")


def parse_client_message(text: str) -> dict[str, Any]:
    """Decode a client control message, raising ``MessageParsingError`` on bad input."""

    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise MessageParsingError(
            f"Invalid JSON message: {exc}", details=str(exc)
        ) from exc
    if not isinstance(payload, dict):
        raise MessageParsingError(
            "Message must be a JSON object with a 'type' field",
            details=f"got {type(payload).__name__}",
        )
    return payload


__all__ = [
    "GOING_AWAY",
    "NORMAL_CLOSURE",
    "RESERVED_CLOSE_CODES",
    "SERVER_ERROR",
    "Downstream",
    "RelaySession",
    "SessionState",
    "mirror_close_code",
    "parse_client_message",
]
