"""Application factory for the live TTS relay."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .routers.metadata import router as metadata_router
from .routers.tts import router as tts_router
from .services.session_registry import SessionRegistry
from .services.upstream import DeepgramSpeakConnector, UpstreamFactory

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("live_tts").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Frame-level websocket logging is only useful when debugging
    if log_level > logging.DEBUG:
        logging.getLogger("websockets").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(
    settings: Settings | None = None,
    *,
    upstream_factory: UpstreamFactory | None = None,
) -> FastAPI:
    configure_logging()

    settings = settings or get_settings()
    registry = SessionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.info(f"WebSocket endpoint: ws://{settings.host}:{settings.port}/tts/stream")
        try:
            yield
        finally:
            abandoned = await registry.close_all(settings.shutdown_grace_seconds)
            if abandoned:
                logging.warning(
                    f"Shutdown abandoned {len(abandoned)} relay session(s)"
                )
            logging.info("Server closed")

    app = FastAPI(
        title="Live TTS Relay",
        version="0.1.0",
        description="WebSocket relay between browser clients and Deepgram live TTS.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_registry = registry
    app.state.upstream_factory = upstream_factory or DeepgramSpeakConnector(settings)
    # Routers resolve settings through Depends(get_settings); pin them to ours.
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(metadata_router)
    app.include_router(tts_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "default_model": settings.default_model,
            "active_sessions": len(registry),
        }

    return app


__all__ = ["configure_logging", "create_app"]
