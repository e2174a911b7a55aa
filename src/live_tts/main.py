"""CLI entrypoint for running the relay with uvicorn."""

from __future__ import annotations

import logging
import math
import socket
import sys

import uvicorn
from fastapi import FastAPI

from .app import configure_logging, create_app
from .config import Settings, get_settings
from .services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class RelayServer(uvicorn.Server):
    """uvicorn server that closes relay sessions before dropping connections.

    ``uvicorn.Server.shutdown`` closes every open websocket with 1012 and only
    then runs the lifespan shutdown, so the registry has to be drained first.
    """

    def __init__(self, config: uvicorn.Config, registry: SessionRegistry, grace_seconds: float):
        super().__init__(config)
        self.registry = registry
        self.grace_seconds = grace_seconds

    async def shutdown(self, sockets: list[socket.socket] | None = None) -> None:
        abandoned = await self.registry.close_all(self.grace_seconds)
        if abandoned:
            logger.warning(f"Shutdown abandoned {len(abandoned)} relay session(s)")
        await super().shutdown(sockets=sockets)


def build_server(settings: Settings, app: FastAPI | None = None) -> RelayServer:
    app = app or create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        reload=False,
        timeout_graceful_shutdown=max(1, math.ceil(settings.shutdown_grace_seconds)),
    )
    return RelayServer(config, app.state.session_registry, settings.shutdown_grace_seconds)


def main() -> None:
    """Run the ASGI server; exits with status 1 when the API key is missing."""

    configure_logging()
    settings = get_settings()
    if not settings.has_api_key():
        logger.error("Error: DEEPGRAM_API_KEY not found in environment variables")
        sys.exit(1)

    logger.info(f"Backend API Server running at http://localhost:{settings.port}")
    logger.info(f"CORS enabled for http://localhost:{settings.frontend_port}")

    build_server(settings).run()


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
