from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket

from ..config import Settings, get_settings
from ..services.relay_session import RelaySession
from ..services.upstream import UpstreamRequest

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tts"])


def _parse_sample_rate(raw: str | None, default: int) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid sample_rate {raw!r}; using {default}")
        return default
    return value if value > 0 else default


def build_upstream_request(websocket: WebSocket, settings: Settings) -> UpstreamRequest:
    """Read the synthesis parameters from the upgrade request's query string."""

    params = websocket.query_params
    return UpstreamRequest(
        model=params.get("model") or settings.default_model,
        encoding=params.get("encoding") or settings.default_encoding,
        sample_rate=_parse_sample_rate(
            params.get("sample_rate"), settings.default_sample_rate
        ),
        container=params.get("container") or settings.default_container,
    )


@router.websocket("/tts/stream")
async def tts_stream(
    websocket: WebSocket, settings: Settings = Depends(get_settings)
) -> None:
    app_state = websocket.app.state
    request = build_upstream_request(websocket, settings)

    await websocket.accept()
    logger.info(f"Client connected to /tts/stream (model={request.model})")

    session = RelaySession(
        websocket,
        app_state.upstream_factory,
        request,
        app_state.session_registry,
    )
    await session.run()
